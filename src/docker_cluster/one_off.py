import socket
import sys
import threading
from typing import BinaryIO

from rich.console import Console
from rich.markup import escape

from .errors import ConfigError, RuntimeCallFailure
from .gateway import RuntimeGateway
from .models import Configuration, Slot
from .ports import allocate_ports

err_console = Console(stderr=True)

CHUNK_SIZE = 4096


def forward_stdin(sock, source: BinaryIO | None = None) -> threading.Thread:
    """Copy local stdin into the attached container socket until EOF, then half-close it."""
    source = source or sys.stdin.buffer

    def _pump() -> None:
        try:
            for chunk in iter(lambda: source.read1(CHUNK_SIZE), b""):
                sock.sendall(chunk)
            sock.shutdown(socket.SHUT_WR)
        except OSError:
            # the container exited and closed its end
            return

    worker = threading.Thread(target=_pump, daemon=True)
    worker.start()
    return worker


def run_one_off(gateway: RuntimeGateway, config: Configuration) -> int:
    """
    Launch a single ephemeral instance, stream its output and return its exit status.
    Slot 1 naming and ports apply unless overridden by flags given after --one-off.
    With -i the local stdin is forwarded to the instance.
    """
    if not config.image:
        raise ConfigError("--image is required")
    image_id = gateway.resolve_image(config.image)

    options = config.run_options
    slot = Slot(index=1, prefix=config.name, base_hostname=config.hostname) if config.name else None
    name = options.name or (slot.name if slot else None)
    hostname = options.hostname or (slot.hostname if slot else None)
    ports = list(options.publish) if options.publish else allocate_ports(1, config.ports)

    container = gateway.create(name, hostname, image_id, command=config.command, ports=ports, extra=options.engine_kwargs)
    try:
        if options.engine_kwargs.get("stdin_open"):
            forward_stdin(gateway.attach_stdin(container))
        for chunk in gateway.stream_logs(container):
            sys.stdout.buffer.write(chunk)
            sys.stdout.flush()
        return gateway.wait(container)
    finally:
        try:
            gateway.remove(container.id)
        except RuntimeCallFailure as e:
            err_console.print(f"[orange1]Warning: could not remove one-off container:[/orange1] {escape(str(e))}")
