from collections.abc import Iterable

from .errors import ConfigError
from .models import PortMapping, PortSpec


def allocate_ports(index: int, specs: Iterable[PortSpec | str]) -> list[PortMapping]:
    """
    Host port bindings for a slot.
    Slot 1 gets the base host port (or the container port), every later slot shifts by one.
    """
    if index < 1:
        raise ConfigError(f"Slot index must be >= 1, got {index}")

    mappings = []
    for spec in specs:
        if not isinstance(spec, PortSpec):
            spec = PortSpec.parse(spec)
        base = spec.base_host_port if spec.base_host_port is not None else spec.container_port
        host_port = base + index - 1
        if host_port > 65535:
            raise ConfigError(f"Port {spec.container_port} for slot {index} overflows to host port {host_port}")
        mappings.append(PortMapping(host_port=host_port, container_port=spec.container_port))
    return mappings


def to_engine_ports(mappings: Iterable[PortMapping]) -> dict[str, int | tuple[str, int] | list]:
    """Docker SDK `ports=` argument for a set of bindings."""
    ports: dict[str, list] = {}
    for mapping in mappings:
        key = f"{mapping.container_port}/{mapping.protocol}"
        binding = (mapping.host_ip, mapping.host_port) if mapping.host_ip else mapping.host_port
        ports.setdefault(key, []).append(binding)
    return {key: bindings[0] if len(bindings) == 1 else bindings for key, bindings in ports.items()}
