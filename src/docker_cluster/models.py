from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigError


class PortSpec(BaseModel):
    """A `--port CONTAINER[:BASE]` option."""

    model_config = ConfigDict(frozen=True)

    container_port: int = Field(..., ge=1, le=65535, description="Port exposed inside the container")
    base_host_port: int | None = Field(None, ge=1, le=65535, description="Host port used by slot 1")

    @classmethod
    def parse(cls, text: str) -> "PortSpec":
        container, sep, base = str(text).strip().partition(":")
        if not container.isdigit() or (sep and not base.isdigit()):
            raise ConfigError(f"Invalid port mapping '{text}': expected CONTAINER[:BASE] with numeric ports")
        try:
            return cls(container_port=int(container), base_host_port=int(base) if base else None)
        except ValueError as e:
            raise ConfigError(f"Invalid port mapping '{text}': {e}") from e


class PortMapping(BaseModel):
    model_config = ConfigDict(frozen=True)

    host_port: int
    container_port: int
    protocol: str = "tcp"
    host_ip: str | None = None

    @property
    def flag(self) -> str:
        host = f"{self.host_ip}:{self.host_port}" if self.host_ip else str(self.host_port)
        suffix = "" if self.protocol == "tcp" else f"/{self.protocol}"
        return f"-p {host}:{self.container_port}{suffix}"


class HealthSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["command", "url"]
    value: str

    @classmethod
    def parse(cls, text: str | None) -> "HealthSpec | None":
        if text is None or not text.strip():
            return None
        text = text.strip()
        if text.startswith(("http://", "https://")):
            return cls(kind="url", value=text)
        return cls(kind="command", value=text)


class RunOptions(BaseModel):
    """Pass-through `docker run` flags, already translated for the Docker SDK."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    hostname: str | None = None
    publish: tuple[PortMapping, ...] = ()
    command: tuple[str, ...] = ()
    engine_kwargs: dict[str, Any] = Field(default_factory=dict)


class Configuration(BaseModel):
    """Everything a single invocation needs. Built once, never mutated."""

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(None, description="Instance name prefix")
    count: int = Field(1, ge=0, description="Desired number of instances")
    image: str | None = Field(None, description="Image reference to deploy")
    ports: tuple[PortSpec, ...] = ()
    hostname: str | None = Field(None, description="Base hostname for the instances")
    healthcheck: HealthSpec | None = None
    timeout: int = Field(120, ge=0, description="Seconds allowed per stop and per start")
    force: bool = False
    command: tuple[str, ...] = ()
    run_options: RunOptions = Field(default_factory=RunOptions)
    one_off: bool = False


class Slot(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=1)
    prefix: str
    base_hostname: str | None = None

    @property
    def name(self) -> str:
        return f"{self.prefix}.{self.index}"

    @property
    def hostname(self) -> str:
        if self.base_hostname:
            return f"{self.prefix}-{self.index}.{self.base_hostname}"
        return f"{self.prefix}-{self.index}"


class InstanceStatus(BaseModel):
    """Typed view of the engine's free-text status, e.g. 'Up 3 minutes (healthy)'."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    running: bool = False
    health_annotated: bool = False
    healthy: bool = False

    @classmethod
    def parse(cls, text: str | None) -> "InstanceStatus":
        text = (text or "").strip()
        lowered = text.lower()
        annotated = "health" in lowered
        return cls(
            text=text,
            running=text.startswith("Up"),
            health_annotated=annotated,
            # "(unhealthy)" and "(health: starting)" both carry the annotation
            healthy=annotated and "(healthy)" in lowered,
        )


class InstanceObservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    image: str
    status: InstanceStatus

    @property
    def short_id(self) -> str:
        return self.id[:12]


class HealthOutcome(str, Enum):
    HEALTHY = "healthy"
    NOT_YET_HEALTHY = "not_yet_healthy"
    FAILED = "failed"
