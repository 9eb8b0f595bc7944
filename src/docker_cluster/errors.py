"""Error taxonomy for docker-cluster rollouts."""


class ClusterError(Exception):
    """Base exception for every failure that ends a run with exit status 1."""


class ConfigError(ClusterError):
    """Bad flags or config files. Always raised before the engine is touched."""


class ImageNotFound(ClusterError):
    """The requested image reference does not resolve to a local image id."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Image not found: {reference}")


class StartFailure(ClusterError):
    """A slot could not be brought up. Aborts the remaining slots."""

    def __init__(self, slot_name: str, phase: str, detail: str) -> None:
        self.slot_name = slot_name
        self.phase = phase
        self.detail = detail
        super().__init__(f"{slot_name} [{phase}]: {detail}")


class RuntimeCallFailure(ClusterError):
    """A container engine call failed unexpectedly."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        self.original_error = original_error
        super().__init__(message)


class InstanceGone(RuntimeCallFailure):
    """The engine no longer knows the container."""


class ExecTimeout(RuntimeCallFailure):
    """An exec inside a container did not finish within its time bound."""
