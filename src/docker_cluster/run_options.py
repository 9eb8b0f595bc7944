"""Translate pass-through `docker run` flags into Docker SDK `containers.run` options."""

import argparse
import re
import shlex
from pathlib import Path
from typing import Any

from docker.errors import DockerException
from docker.types import DeviceRequest, Mount, Ulimit

from .errors import ConfigError
from .models import PortMapping, RunOptions

DURATION_UNITS = {"ns": 1, "us": 10**3, "µs": 10**3, "ms": 10**6, "s": 10**9, "m": 60 * 10**9, "h": 3600 * 10**9}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")

# argparse dest -> containers.run keyword, for options that need no conversion
PLAIN_OPTIONS = {
    "network": "network",
    "user": "user",
    "workdir": "working_dir",
    "memory": "mem_limit",
    "memory_reservation": "mem_reservation",
    "kernel_memory": "kernel_memory",
    "dns": "dns",
    "dns_option": "dns_opt",
    "dns_search": "dns_search",
    "cap_add": "cap_add",
    "cap_drop": "cap_drop",
    "stop_signal": "stop_signal",
    "shm_size": "shm_size",
    "device": "devices",
    "device_cgroup_rule": "device_cgroup_rules",
    "security_opt": "security_opt",
    "group_add": "group_add",
    "volumes_from": "volumes_from",
    "pid": "pid_mode",
    "ipc": "ipc_mode",
    "uts": "uts_mode",
    "userns": "userns_mode",
    "cgroupns": "cgroupns",
    "cgroup_parent": "cgroup_parent",
    "cpuset_cpus": "cpuset_cpus",
    "cpuset_mems": "cpuset_mems",
    "cpu_shares": "cpu_shares",
    "cpu_period": "cpu_period",
    "cpu_quota": "cpu_quota",
    "cpu_rt_period": "cpu_rt_period",
    "cpu_rt_runtime": "cpu_rt_runtime",
    "blkio_weight": "blkio_weight",
    "memory_swappiness": "mem_swappiness",
    "oom_score_adj": "oom_score_adj",
    "pids_limit": "pids_limit",
    "domainname": "domainname",
    "mac_address": "mac_address",
    "runtime": "runtime",
    "isolation": "isolation",
    "volume_driver": "volume_driver",
    "platform": "platform",
}

# argparse dest -> containers.run keyword, for on/off flags
SWITCHES = {
    "privileged": "privileged",
    "tty": "tty",
    "interactive": "stdin_open",
    "init": "init",
    "read_only": "read_only",
    "publish_all": "publish_all_ports",
    "oom_kill_disable": "oom_kill_disable",
}


class StrictArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises ConfigError instead of exiting the process."""

    def error(self, message: str):
        raise ConfigError(message)


def _build_parser() -> StrictArgumentParser:
    p = StrictArgumentParser(prog="docker run", add_help=False, allow_abbrev=False)
    p.add_argument("-e", "--env", action="append", default=[])
    p.add_argument("--env-file", action="append", default=[])
    p.add_argument("-v", "--volume", action="append", default=[])
    p.add_argument("--mount", action="append", default=[])
    p.add_argument("--tmpfs", action="append", default=[])
    p.add_argument("--volumes-from", action="append", default=[])
    p.add_argument("--volume-driver")
    p.add_argument("--network", "--net")
    p.add_argument("--link", action="append", default=[])
    p.add_argument("-l", "--label", action="append", default=[])
    p.add_argument("--label-file", action="append", default=[])
    p.add_argument("--restart")
    p.add_argument("-u", "--user")
    p.add_argument("-w", "--workdir")
    p.add_argument("--entrypoint")
    p.add_argument("--add-host", action="append", default=[])
    p.add_argument("--dns", action="append", default=[])
    p.add_argument("--dns-option", "--dns-opt", action="append", default=[])
    p.add_argument("--dns-search", action="append", default=[])
    p.add_argument("--domainname")
    p.add_argument("--mac-address")
    p.add_argument("--log-driver")
    p.add_argument("--log-opt", action="append", default=[])
    p.add_argument("--stop-signal")
    p.add_argument("--platform")
    p.add_argument("--runtime")
    p.add_argument("--isolation")

    # resources
    p.add_argument("-m", "--memory")
    p.add_argument("--memory-reservation")
    p.add_argument("--memory-swap")
    p.add_argument("--memory-swappiness", type=int)
    p.add_argument("--kernel-memory")
    p.add_argument("--oom-kill-disable", action="store_true")
    p.add_argument("--oom-score-adj", type=int)
    p.add_argument("--cpus", type=float)
    p.add_argument("-c", "--cpu-shares", type=int)
    p.add_argument("--cpu-period", type=int)
    p.add_argument("--cpu-quota", type=int)
    p.add_argument("--cpu-rt-period", type=int)
    p.add_argument("--cpu-rt-runtime", type=int)
    p.add_argument("--cpuset-cpus")
    p.add_argument("--cpuset-mems")
    p.add_argument("--blkio-weight", type=int)
    p.add_argument("--pids-limit", type=int)
    p.add_argument("--shm-size")
    p.add_argument("--ulimit", action="append", default=[])
    p.add_argument("--storage-opt", action="append", default=[])
    p.add_argument("--gpus")

    # isolation and privileges
    p.add_argument("--cap-add", action="append", default=[])
    p.add_argument("--cap-drop", action="append", default=[])
    p.add_argument("--privileged", action="store_true")
    p.add_argument("--security-opt", action="append", default=[])
    p.add_argument("--device", action="append", default=[])
    p.add_argument("--device-cgroup-rule", action="append", default=[])
    p.add_argument("--group-add", action="append", default=[])
    p.add_argument("--sysctl", action="append", default=[])
    p.add_argument("--pid")
    p.add_argument("--ipc")
    p.add_argument("--uts")
    p.add_argument("--userns")
    p.add_argument("--cgroupns")
    p.add_argument("--cgroup-parent")
    p.add_argument("--read-only", action="store_true")
    p.add_argument("--init", action="store_true")
    p.add_argument("-t", "--tty", action="store_true")
    p.add_argument("-i", "--interactive", action="store_true")

    # engine-side health check
    p.add_argument("--health-cmd")
    p.add_argument("--health-interval")
    p.add_argument("--health-timeout")
    p.add_argument("--health-retries", type=int)
    p.add_argument("--health-start-period")
    p.add_argument("--no-healthcheck", action="store_true")

    p.add_argument("--name")
    p.add_argument("-h", "--hostname")
    p.add_argument("-p", "--publish", "--port", action="append", default=[])
    p.add_argument("-P", "--publish-all", action="store_true")
    p.add_argument("--expose", action="append", default=[])
    # Containers are always removed and run detached by docker-cluster itself.
    p.add_argument("--rm", action="store_true")
    p.add_argument("-d", "--detach", action="store_true")
    p.add_argument("command", nargs=argparse.REMAINDER)
    return p


_PARSER = _build_parser()


def parse_publish(text: str) -> PortMapping:
    """Parse a docker `-p [IP:][HOST:]CONTAINER[/PROTO]` value."""
    spec, _, protocol = text.partition("/")
    parts = spec.rsplit(":", 2)
    try:
        if len(parts) == 1:
            container = int(parts[0])
            return PortMapping(host_port=container, container_port=container, protocol=protocol or "tcp")
        if len(parts) == 2:
            return PortMapping(host_port=int(parts[0]), container_port=int(parts[1]), protocol=protocol or "tcp")
        return PortMapping(
            host_ip=parts[0], host_port=int(parts[1]), container_port=int(parts[2]), protocol=protocol or "tcp"
        )
    except ValueError as e:
        raise ConfigError(f"Invalid published port '{text}'") from e


def parse_duration(text: str, flag: str) -> int:
    """Go-style duration ('30s', '1m30s', '500ms') in nanoseconds."""
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(number + unit for number, unit in parts) != text:
        raise ConfigError(f"Invalid {flag} value '{text}': expected a duration such as 30s or 1m30s")
    return int(sum(float(number) * DURATION_UNITS[unit] for number, unit in parts))


def parse_expose(text: str) -> list[str]:
    """`--expose PORT[-PORT][/PROTO]` -> SDK port keys."""
    spec, _, protocol = text.partition("/")
    first, _, last = spec.partition("-")
    if not first.isdigit() or (last and not last.isdigit()):
        raise ConfigError(f"Invalid --expose value '{text}'")
    return [f"{port}/{protocol or 'tcp'}" for port in range(int(first), int(last or first) + 1)]


def parse_ulimit(text: str) -> Ulimit:
    """`--ulimit NAME=SOFT[:HARD]`"""
    name, sep, limits = text.partition("=")
    soft, _, hard = limits.partition(":")
    try:
        if not name or not sep:
            raise ValueError(text)
        return Ulimit(name=name, soft=int(soft), hard=int(hard or soft))
    except ValueError as e:
        raise ConfigError(f"Invalid --ulimit value '{text}': expected NAME=SOFT[:HARD]") from e


def parse_mount(text: str) -> Mount:
    """`--mount type=bind,source=/src,target=/dst,readonly` in the docker CLI's csv form."""
    fields: dict[str, Any] = {"type": "volume", "source": None, "read_only": False}
    for item in text.split(","):
        key, sep, value = item.strip().partition("=")
        key = key.lower()
        if key == "type":
            fields["type"] = value
        elif key in ("source", "src"):
            fields["source"] = value
        elif key in ("target", "destination", "dst"):
            fields["target"] = value
        elif key in ("readonly", "ro"):
            fields["read_only"] = not sep or value.lower() in ("1", "true")
        elif key == "bind-propagation":
            fields["propagation"] = value
        elif key == "volume-nocopy":
            fields["no_copy"] = not sep or value.lower() in ("1", "true")
        elif key == "tmpfs-size":
            fields["tmpfs_size"] = value
        elif key == "tmpfs-mode":
            try:
                fields["tmpfs_mode"] = int(value, 8)
            except ValueError as e:
                raise ConfigError(f"Invalid tmpfs-mode in --mount '{text}'") from e
        else:
            raise ConfigError(f"Unsupported --mount field '{key}' in '{text}'")

    if not fields.get("target"):
        raise ConfigError(f"Invalid --mount value '{text}': target is required")
    target = fields.pop("target")
    source = fields.pop("source")
    try:
        return Mount(target, source, **fields)
    except (DockerException, ValueError) as e:
        raise ConfigError(f"Invalid --mount value '{text}': {e}") from e


def parse_gpus(text: str) -> DeviceRequest:
    """`--gpus all`, `--gpus 2` or `--gpus device=0,1`"""
    value = text.strip().strip("\"'")
    if value == "all":
        return DeviceRequest(count=-1, capabilities=[["gpu"]])
    if value.isdigit():
        return DeviceRequest(count=int(value), capabilities=[["gpu"]])
    key, sep, ids = value.partition("=")
    if key == "device" and sep and ids:
        return DeviceRequest(device_ids=ids.split(","), capabilities=[["gpu"]])
    raise ConfigError(f"Invalid --gpus value '{text}': expected all, a count, or device=ID[,ID]")


def healthcheck(args: argparse.Namespace) -> dict[str, Any] | None:
    """Engine-side health check, the annotation `docker ps` reports as (healthy)."""
    if args.no_healthcheck:
        if args.health_cmd:
            raise ConfigError("--no-healthcheck conflicts with --health-cmd")
        return {"test": ["NONE"]}

    check: dict[str, Any] = {}
    if args.health_cmd:
        check["test"] = ["CMD-SHELL", args.health_cmd]
    for flag, value, key in (
        ("--health-interval", args.health_interval, "interval"),
        ("--health-timeout", args.health_timeout, "timeout"),
        ("--health-start-period", args.health_start_period, "start_period"),
    ):
        if value:
            check[key] = parse_duration(value, flag)
    if args.health_retries is not None:
        check["retries"] = args.health_retries
    return check or None


def _key_values(items: list[str], flag: str, separator: str = "=") -> dict[str, str]:
    result = {}
    for item in items:
        key, sep, value = item.partition(separator)
        if not key or not sep:
            raise ConfigError(f"Invalid {flag} value '{item}': expected KEY{separator}VALUE")
        result[key] = value
    return result


def _read_lines(path: str, flag: str) -> list[str]:
    try:
        lines = Path(path).read_text().splitlines()
    except OSError as e:
        raise ConfigError(f"Cannot read {flag} '{path}': {e}") from e
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]


def _restart_policy(text: str) -> dict[str, Any]:
    name, _, retries = text.partition(":")
    policy: dict[str, Any] = {"Name": name}
    if retries:
        if not retries.isdigit():
            raise ConfigError(f"Invalid --restart value '{text}'")
        policy["MaximumRetryCount"] = int(retries)
    return policy


def _links(items: list[str]) -> dict[str, str]:
    links = {}
    for item in items:
        name, _, alias = item.partition(":")
        links[name] = alias or name
    return links


def parse_run_options(tokens: list[str]) -> RunOptions:
    """
    Parse docker run style tokens.
    The first positional token and everything after it is the container command.
    """
    args = _PARSER.parse_args(list(tokens))

    kwargs: dict[str, Any] = {}
    for dest, option in PLAIN_OPTIONS.items():
        value = getattr(args, dest)
        if value not in (None, []):
            kwargs[option] = value
    for dest, option in SWITCHES.items():
        if getattr(args, dest):
            kwargs[option] = True

    environment = [line for path in args.env_file for line in _read_lines(path, "--env-file")] + args.env
    if environment:
        kwargs["environment"] = environment
    if args.volume:
        kwargs["volumes"] = args.volume
    if args.mount:
        kwargs["mounts"] = [parse_mount(m) for m in args.mount]
    if args.tmpfs:
        kwargs["tmpfs"] = {path: opts for path, _, opts in (t.partition(":") for t in args.tmpfs)}
    if args.link:
        kwargs["links"] = _links(args.link)
    labels = [line for path in args.label_file for line in _read_lines(path, "--label-file")] + args.label
    if labels:
        kwargs["labels"] = _key_values(labels, "--label")
    if args.restart:
        kwargs["restart_policy"] = _restart_policy(args.restart)
    if args.memory_swap:
        kwargs["memswap_limit"] = -1 if args.memory_swap == "-1" else args.memory_swap
    if args.cpus is not None:
        kwargs["nano_cpus"] = int(args.cpus * 1_000_000_000)
    if args.entrypoint is not None:
        kwargs["entrypoint"] = shlex.split(args.entrypoint)
    if args.add_host:
        kwargs["extra_hosts"] = _key_values(args.add_host, "--add-host", separator=":")
    if args.log_driver or args.log_opt:
        kwargs["log_config"] = {"Type": args.log_driver or "json-file", "Config": _key_values(args.log_opt, "--log-opt")}
    if args.ulimit:
        kwargs["ulimits"] = [parse_ulimit(u) for u in args.ulimit]
    if args.storage_opt:
        kwargs["storage_opt"] = _key_values(args.storage_opt, "--storage-opt")
    if args.sysctl:
        kwargs["sysctls"] = _key_values(args.sysctl, "--sysctl")
    if args.gpus:
        kwargs["device_requests"] = [parse_gpus(args.gpus)]
    check = healthcheck(args)
    if check:
        kwargs["healthcheck"] = check
    if args.expose:
        # exposed without a host binding; published ports are merged over these
        kwargs["ports"] = {key: [] for text in args.expose for key in parse_expose(text)}

    return RunOptions(
        name=args.name,
        hostname=args.hostname,
        publish=tuple(parse_publish(p) for p in args.publish),
        command=tuple(args.command),
        engine_kwargs=kwargs,
    )
