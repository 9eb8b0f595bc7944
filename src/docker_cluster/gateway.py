import re
import threading
from collections.abc import Iterable, Iterator
from typing import Any

import docker
from docker.errors import APIError, DockerException, ImageNotFound as DockerImageNotFound, NotFound

from .errors import ExecTimeout, ImageNotFound, InstanceGone, RuntimeCallFailure
from .models import InstanceObservation, InstanceStatus, PortMapping
from .ports import to_engine_ports
from .settings import AppSettings, get_settings

KILL_SIGNALS = {"KILL", "SIGKILL", "9"}


class RuntimeGateway:
    """
    The only component that talks to the container engine.
    No retries here: every call either succeeds or raises RuntimeCallFailure.
    """

    def __init__(self, client: docker.DockerClient):
        self.client = client

    @classmethod
    def from_settings(cls, settings: AppSettings | None = None) -> "RuntimeGateway":
        settings = settings or get_settings()
        try:
            if settings.DOCKER_BASE_URL:
                client = docker.DockerClient(base_url=settings.DOCKER_BASE_URL)
            else:
                client = docker.from_env()
        except DockerException as e:
            raise RuntimeCallFailure(f"Could not connect to Docker daemon: {e}", e) from e
        return cls(client)

    def _get(self, container_id: str):
        try:
            return self.client.containers.get(container_id)
        except NotFound as e:
            raise InstanceGone(f"Container {container_id[:12]} no longer exists", e) from e
        except DockerException as e:
            raise RuntimeCallFailure(f"Inspect of {container_id[:12]} failed: {e}", e) from e

    def _list(self, name_filter: str, include_stopped: bool) -> list[InstanceObservation]:
        try:
            # sparse keeps the list endpoint's attrs, which carry the human "Status" text
            containers = self.client.containers.list(all=include_stopped, sparse=True, filters={"name": name_filter})
        except DockerException as e:
            raise RuntimeCallFailure(f"Listing containers '{name_filter}' failed: {e}", e) from e

        observations = []
        for container in containers:
            observation = _observe(container.attrs)
            # The engine matches name filters anywhere in the name
            if observation.name.startswith(name_filter):
                observations.append(observation)
        return sorted(observations, key=lambda o: o.name)

    def list_running(self, name_filter: str) -> list[InstanceObservation]:
        return self._list(name_filter, include_stopped=False)

    def list_all(self, name_filter: str) -> list[InstanceObservation]:
        return self._list(name_filter, include_stopped=True)

    def resolve_image(self, reference: str) -> str:
        try:
            return self.client.images.get(reference).id
        except DockerImageNotFound as e:
            raise ImageNotFound(reference) from e
        except DockerException as e:
            raise RuntimeCallFailure(f"Inspect of image '{reference}' failed: {e}", e) from e

    def create(
        self,
        name: str | None,
        hostname: str | None,
        image: str,
        command: Iterable[str] = (),
        ports: Iterable[PortMapping] = (),
        extra: dict[str, Any] | None = None,
    ):
        kwargs = dict(extra or {})
        if name:
            kwargs["name"] = name
        if hostname:
            kwargs["hostname"] = hostname
        # --expose entries carry no host binding; published ports replace them
        port_bindings = {**kwargs.pop("ports", {}), **to_engine_ports(ports)}
        if port_bindings:
            kwargs["ports"] = port_bindings
        try:
            container = self.client.containers.run(image, command=list(command) or None, detach=True, **kwargs)
        except DockerException as e:
            raise RuntimeCallFailure(f"Run of {name or image} failed: {e}", e) from e
        if container is None or not getattr(container, "id", None):
            raise RuntimeCallFailure(f"Run of {name or image} returned no container id")
        return container

    def run(
        self,
        name: str | None,
        hostname: str | None,
        image: str,
        command: Iterable[str] = (),
        ports: Iterable[PortMapping] = (),
        extra: dict[str, Any] | None = None,
    ) -> str:
        """Start a detached container and return its id."""
        return self.create(name, hostname, image, command, ports, extra).id

    def stop(self, container_id: str) -> str | None:
        """
        Send the container's own stop signal without waiting for it to exit.
        Returns the signal sent, or None when the container was not running.
        """
        container = self._get(container_id)
        state = container.attrs.get("State") or {}
        if not state.get("Running"):
            return None
        signal = (container.attrs.get("Config") or {}).get("StopSignal") or "SIGTERM"
        try:
            container.kill(signal=signal)
        except NotFound as e:
            raise InstanceGone(f"Container {container_id[:12]} no longer exists", e) from e
        except DockerException as e:
            raise RuntimeCallFailure(f"Stop of {container_id[:12]} failed: {e}", e) from e
        return signal

    def kill(self, container_id: str) -> None:
        container = self._get(container_id)
        try:
            container.kill()
        except NotFound as e:
            raise InstanceGone(f"Container {container_id[:12]} no longer exists", e) from e
        except APIError as e:
            if e.status_code == 409:  # exited on its own meanwhile
                return
            raise RuntimeCallFailure(f"Kill of {container_id[:12]} failed: {e}", e) from e

    def remove(self, container_id: str) -> None:
        try:
            self.client.api.remove_container(container_id, force=True)
        except NotFound:
            return
        except DockerException as e:
            raise RuntimeCallFailure(f"Remove of {container_id[:12]} failed: {e}", e) from e

    def exec(self, container_id: str, command: list[str], timeout: float | None = None) -> int:
        """Run a command inside the container and return its exit code."""
        container = self._get(container_id)
        outcome: dict[str, Any] = {}

        def _run() -> None:
            try:
                outcome["result"] = container.exec_run(command)
            except Exception as e:  # re-raised in the calling thread
                outcome["error"] = e

        worker = threading.Thread(target=_run, daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            raise ExecTimeout(f"Exec in {container_id[:12]} did not finish within {timeout}s")

        error = outcome.get("error")
        if isinstance(error, NotFound):
            raise InstanceGone(f"Container {container_id[:12]} no longer exists", error) from error
        if isinstance(error, APIError) and error.status_code == 409:
            raise InstanceGone(f"Container {container_id[:12]} is not running", error) from error
        if error is not None:
            raise RuntimeCallFailure(f"Exec in {container_id[:12]} failed: {error}", error) from error
        exit_code = outcome["result"].exit_code
        return 0 if exit_code is None else int(exit_code)

    def prune(self, name_filter: str, name_pattern: re.Pattern | None = None) -> list[str]:
        """
        Remove stopped containers carrying the name prefix. Returns removed names.
        With a pattern, only names matching it in full are removed.
        """
        removed = []
        for observation in self.list_all(name_filter):
            if observation.status.running:
                continue
            if name_pattern and not name_pattern.fullmatch(observation.name):
                continue
            self.remove(observation.id)
            removed.append(observation.name)
        return removed

    def wait(self, container) -> int:
        try:
            result = container.wait()
        except DockerException as e:
            raise RuntimeCallFailure(f"Waiting for {container.id[:12]} failed: {e}", e) from e
        return int(result.get("StatusCode", 1))

    def attach_stdin(self, container):
        """Raw socket wired to the container's stdin."""
        try:
            sock = self.client.api.attach_socket(container.id, params={"stdin": 1, "stream": 1})
        except DockerException as e:
            raise RuntimeCallFailure(f"Attaching to {container.id[:12]} failed: {e}", e) from e
        # unix sockets come back wrapped in a SocketIO
        return getattr(sock, "_sock", sock)

    def stream_logs(self, container) -> Iterator[bytes]:
        try:
            yield from container.logs(stream=True, follow=True)
        except DockerException as e:
            raise RuntimeCallFailure(f"Reading logs of {container.id[:12]} failed: {e}", e) from e


def is_kill_signal(signal: str | None) -> bool:
    return (signal or "").upper() in KILL_SIGNALS


def _observe(attrs: dict[str, Any]) -> InstanceObservation:
    names = attrs.get("Names") or [attrs.get("Name") or ""]
    return InstanceObservation(
        id=attrs.get("Id", ""),
        name=names[0].lstrip("/"),
        image=attrs.get("ImageID") or attrs.get("Image") or "",
        status=InstanceStatus.parse(attrs.get("Status")),
    )
