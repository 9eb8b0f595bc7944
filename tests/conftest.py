"""Test configuration and fixtures."""

import itertools
from dataclasses import dataclass, field
from unittest.mock import MagicMock

import pytest

from docker_cluster.errors import ImageNotFound, InstanceGone, RuntimeCallFailure
from docker_cluster.lifecycle import SlotLifecycle
from docker_cluster.models import InstanceObservation, InstanceStatus
from docker_cluster.reconciler import Reconciler
from docker_cluster.settings import AppSettings

IMAGES = {"app:v1": "sha256:v1", "app:v2": "sha256:v2"}


@dataclass
class FakeContainer:
    id: str
    name: str
    image: str
    status: str = "Up 5 minutes"
    stop_signal: str = "SIGTERM"
    ignores_stop: bool = False

    def observe(self) -> InstanceObservation:
        return InstanceObservation(id=self.id, name=self.name, image=self.image, status=InstanceStatus.parse(self.status))


@dataclass
class FakeEngine:
    """In-memory stand-in for RuntimeGateway."""

    images: dict = field(default_factory=lambda: dict(IMAGES))
    containers: dict = field(default_factory=dict)
    calls: list = field(default_factory=list)
    # name -> status given to instances started under that name; None means it exits at once
    start_status: dict = field(default_factory=dict)
    exec_codes: list = field(default_factory=list)
    # names whose removal the engine refuses
    fail_remove: set = field(default_factory=set)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def add(self, name, image="sha256:v2", **kwargs) -> FakeContainer:
        container = FakeContainer(id=f"c{next(self._ids):04d}", name=name, image=image, **kwargs)
        self.containers[container.id] = container
        return container

    def by_name(self, name) -> FakeContainer | None:
        return next((c for c in self.containers.values() if c.name == name), None)

    def mutations(self) -> list:
        return [call for call in self.calls if call[0] in {"stop", "kill", "remove", "run"}]

    def list_running(self, name_filter):
        return [o for o in self.list_all(name_filter) if o.status.running]

    def list_all(self, name_filter):
        found = [c.observe() for c in self.containers.values() if c.name.startswith(name_filter)]
        return sorted(found, key=lambda o: o.name)

    def resolve_image(self, reference):
        if reference not in self.images:
            raise ImageNotFound(reference)
        return self.images[reference]

    def run(self, name, hostname, image, command=(), ports=(), extra=None):
        self.calls.append(("run", name, hostname, tuple(ports)))
        if self.by_name(name):
            raise RuntimeCallFailure(f"Conflict: name {name} in use")
        status = self.start_status.get(name, "Up 1 second")
        container = self.add(name, image=image, status=status or "Exited (1) 1 second ago")
        return container.id

    def stop(self, container_id):
        container = self._get(container_id)
        if not container.status.startswith("Up"):
            return None
        self.calls.append(("stop", container.name))
        if not container.ignores_stop:
            container.status = "Exited (0) 1 second ago"
        return container.stop_signal

    def kill(self, container_id):
        container = self._get(container_id)
        self.calls.append(("kill", container.name))
        container.status = "Exited (137) 1 second ago"

    def remove(self, container_id):
        container = self.containers.get(container_id)
        if container is None:
            return
        self.calls.append(("remove", container.name))
        if container.name in self.fail_remove:
            raise RuntimeCallFailure(f"Remove of {container_id} failed: device or resource busy")
        del self.containers[container_id]

    def exec(self, container_id, command, timeout=None):
        container = self._get(container_id)
        self.calls.append(("exec", container.name, tuple(command)))
        return self.exec_codes.pop(0) if self.exec_codes else 0

    def prune(self, name_filter, name_pattern=None):
        removed = []
        for observation in self.list_all(name_filter):
            if name_pattern and not name_pattern.fullmatch(observation.name):
                continue
            if not observation.status.running:
                self.remove(observation.id)
                removed.append(observation.name)
        return removed

    def _get(self, container_id) -> FakeContainer:
        if container_id not in self.containers:
            raise InstanceGone(f"Container {container_id} no longer exists")
        return self.containers[container_id]


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def test_settings():
    """Settings with the default timings, independent of the environment."""
    return AppSettings(POLL_INTERVAL=1.0, KILL_WAIT=2.0, HEALTH_CHECK_TIMEOUT=5.0, DEFAULT_TIMEOUT=120)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lifecycle(engine, clock, test_settings):
    return SlotLifecycle(engine, settings=test_settings, clock=clock.monotonic, sleep=clock.sleep)


@pytest.fixture
def reconciler(engine, lifecycle):
    return Reconciler(engine, lifecycle)


@pytest.fixture
def mock_docker_client():
    """Create mock Docker client."""
    client = MagicMock()
    return client
