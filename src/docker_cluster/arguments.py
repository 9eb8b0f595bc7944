"""Command line and config-file handling: everything that happens before the engine is touched."""

import shlex
from pathlib import Path

import yaml
from pydantic import ValidationError

from .errors import ConfigError
from .models import Configuration, HealthSpec, PortSpec
from .run_options import StrictArgumentParser, parse_run_options
from .settings import AppSettings, get_settings

ONE_OFF_FLAG = "--one-off"
CONFIG_FLAG = "--config"

YAML_SUFFIXES = {".yml", ".yaml"}


def build_parser(settings: AppSettings | None = None) -> StrictArgumentParser:
    settings = settings or get_settings()
    p = StrictArgumentParser(
        prog="docker-cluster",
        description="Rolling, health-gated deployment of a numbered cluster of containers",
        add_help=False,
        allow_abbrev=False,
    )
    p.add_argument("--help", action="help", help="show this help message and exit")
    p.add_argument("--name", help="Instance name prefix; instances are named PREFIX.1 .. PREFIX.N")
    p.add_argument("--count", type=int, default=1, help="Number of instances (0 stops the cluster)")
    p.add_argument("--image", help="Image to deploy")
    p.add_argument("--port", action="append", default=[], metavar="CONTAINER[:BASE]")
    p.add_argument("--hostname", help="Base hostname; instances get PREFIX-INDEX.HOSTNAME")
    p.add_argument("--healthcheck", metavar="CMD|URL", help="Command or URL checked inside each instance")
    p.add_argument("--timeout", type=int, default=settings.DEFAULT_TIMEOUT, help="Seconds per stop and per start")
    p.add_argument("--command", help="Command to run in each instance")
    p.add_argument("--force", action="store_true", help="Restart instances already running the image")
    return p


def split_one_off(argv: list[str]) -> tuple[list[str], list[str] | None]:
    """Split at --one-off; everything after it belongs to the engine verbatim."""
    if ONE_OFF_FLAG in argv:
        index = argv.index(ONE_OFF_FLAG)
        return argv[:index], argv[index + 1 :]
    return argv, None


def expand_config_files(tokens: list[str], _including: tuple[Path, ...] = ()) -> list[str]:
    """Replace every `--config PATH` with the arguments stored in PATH, recursively."""
    expanded = []
    tokens = list(tokens)
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token == CONFIG_FLAG:
            if i + 1 >= len(tokens):
                raise ConfigError("--config requires a path")
            path = tokens[i + 1]
            i += 2
        elif token.startswith(CONFIG_FLAG + "="):
            path = token.split("=", 1)[1]
            i += 1
        else:
            expanded.append(token)
            i += 1
            continue
        expanded.extend(_read_config_file(Path(path), _including))
    return expanded


def _read_config_file(path: Path, including: tuple[Path, ...]) -> list[str]:
    resolved = path.resolve()
    if resolved in including:
        chain = " -> ".join(str(p) for p in (*including, resolved))
        raise ConfigError(f"Config file includes itself: {chain}")
    try:
        text = resolved.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read config file '{path}': {e}") from e

    if resolved.suffix in YAML_SUFFIXES:
        tokens = _yaml_tokens(text, path)
    else:
        try:
            tokens = shlex.split(text, comments=True)
        except ValueError as e:
            raise ConfigError(f"Malformed config file '{path}': {e}") from e
    return expand_config_files(tokens, (*including, resolved))


def _yaml_tokens(text: str, path: Path) -> list[str]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed config file '{path}': {e}") from e
    if data is None:
        return []
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must hold a mapping of options")

    tokens = []
    for key, value in data.items():
        if key == "args":
            tokens.extend(str(v) for v in _as_list(value))
            continue
        flag = "--" + str(key).replace("_", "-")
        for item in _as_list(value):
            if item is True:
                tokens.append(flag)
            elif item is False or item is None:
                continue
            else:
                tokens.extend([flag, str(item)])
    return tokens


def _as_list(value) -> list:
    return list(value) if isinstance(value, list) else [value]


def load_configuration(argv: list[str], settings: AppSettings | None = None) -> Configuration:
    """Turn raw command line arguments into a validated Configuration."""
    own, passthrough = split_one_off(list(argv))
    own = expand_config_files(own)
    args, unknown = build_parser(settings).parse_known_args(own)

    one_off = passthrough is not None
    run_options = parse_run_options(unknown + (passthrough or []))

    if not one_off:
        if not args.name:
            raise ConfigError("--name is required")
        for flag, value in (("--name", run_options.name), ("--hostname", run_options.hostname)):
            if value:
                raise ConfigError(f"Engine flag {flag} cannot be used for cluster instances")
        if run_options.publish:
            raise ConfigError("Engine flag --publish cannot be used for cluster instances; use --port")

    if args.command and run_options.command:
        raise ConfigError(f"Conflicting commands: --command and '{shlex.join(run_options.command)}'")
    command = tuple(shlex.split(args.command)) if args.command else run_options.command

    try:
        return Configuration(
            name=args.name,
            count=args.count,
            image=args.image,
            ports=tuple(PortSpec.parse(p) for p in args.port),
            hostname=args.hostname,
            healthcheck=HealthSpec.parse(args.healthcheck),
            timeout=args.timeout,
            force=args.force,
            command=command,
            run_options=run_options,
            one_off=one_off,
        )
    except ValidationError as e:
        raise ConfigError(str(e)) from e
