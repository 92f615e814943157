"""
Shared pytest fixtures for the fleet test suite.
"""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest

from fleet.config.models import FleetSettings
from fleet.domain.controller import FleetController
from fleet.domain.layout import FleetLayout
from fleet.domain.ports import PortAllocator
from fleet.domain.registry import InstanceRegistry
from fleet.domain.runtime.base import ContainerInfo, ContainerSpec
from fleet.domain.types import ResourceSample
from fleet.errors import InstanceNotFound, RuntimeFailure

API_KEY = "test-api-key-secret"


# ---------------------------------------------------------------------------
# In-memory container runtime
# ---------------------------------------------------------------------------

class FakeRuntime:
    """In-memory stand-in for the Docker runtime.

    Containers are keyed by container name; every operation also accepts
    the container id, like the Docker API does.
    """

    def __init__(self) -> None:
        self.containers: dict[str, ContainerInfo] = {}
        self.specs: dict[str, ContainerSpec] = {}
        self.probe_codes: dict[str, int] = {}
        self.samples: dict[str, ResourceSample] = {}
        self.log_lines: dict[str, list[str]] = {}
        self.fail_run: Exception | None = None
        self.exec_calls: list[tuple[str, list[str]]] = []
        self.stopped: list[str] = []
        self._seq = 0

    def _find(self, name: str) -> ContainerInfo | None:
        if name in self.containers:
            return self.containers[name]
        for info in self.containers.values():
            if info.container_id == name:
                return info
        return None

    def _require(self, name: str) -> ContainerInfo:
        info = self._find(name)
        if info is None:
            raise InstanceNotFound(name)
        return info

    def add(
        self,
        instance: str,
        display_port: int = 6080,
        vnc_port: int = 5901,
        status: str = "running",
        health: str | None = None,
        label: str = "mt5",
    ) -> ContainerInfo:
        """Seed a fleet container directly, bypassing the controller."""
        self._seq += 1
        info = ContainerInfo(
            container_id=f"cid-{self._seq}",
            name=f"{label}-{instance}",
            status=status,
            labels={"app": label, "instance": instance},
            ports={6080: display_port, 5901: vnc_port},
            health=health,
            created_at=1000.0 + self._seq,
        )
        self.containers[info.name] = info
        return info

    def run(self, spec: ContainerSpec) -> ContainerInfo:
        if self.fail_run is not None:
            raise RuntimeFailure(f"Failed to start {spec.name}: {self.fail_run}")
        if spec.name in self.containers:
            raise RuntimeFailure(f"Conflict: container name {spec.name} is already in use")
        self._seq += 1
        info = ContainerInfo(
            container_id=f"cid-{self._seq}",
            name=spec.name,
            status="running",
            labels=dict(spec.labels),
            ports=dict(spec.ports),
            created_at=1000.0 + self._seq,
        )
        self.containers[spec.name] = info
        self.specs[spec.name] = spec
        return info

    def list(self, labels: dict[str, str]) -> list[ContainerInfo]:
        return [
            c for c in self.containers.values()
            if all(c.labels.get(k) == v for k, v in labels.items())
        ]

    def get(self, name: str) -> ContainerInfo | None:
        return self._find(name)

    def start(self, name: str) -> None:
        self._require(name).status = "running"

    def stop(self, name: str, timeout: int = 10) -> None:
        info = self._require(name)
        info.status = "exited"
        self.stopped.append(info.name)

    def remove(self, name: str) -> None:
        info = self._require(name)
        del self.containers[info.name]

    def stats(self, name: str) -> ResourceSample:
        info = self._require(name)
        return self.samples.get(info.name, ResourceSample(5.0, 10.0, 100 * 2**20, 1000 * 2**20))

    def exec(self, name: str, command: list[str]) -> tuple[int, str]:
        info = self._require(name)
        self.exec_calls.append((info.name, command))
        code = self.probe_codes.get(info.name, 0)
        return code, "" if code == 0 else "curl: (7) Failed to connect"

    def logs(self, name: str, tail: int | None = None, follow: bool = False) -> Iterator[str]:
        info = self._require(name)
        lines = self.log_lines.get(info.name, [])
        if tail is not None:
            lines = lines[-tail:]
        return iter(lines)


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> FleetSettings:
    return FleetSettings(security={"api_key": API_KEY, "rate_limiting": {"enabled": False}})


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def layout(tmp_path) -> FleetLayout:
    return FleetLayout(tmp_path)


@pytest.fixture
def registry(runtime, layout) -> InstanceRegistry:
    return InstanceRegistry(runtime, layout, app_label="mt5")


@pytest.fixture
def allocator() -> PortAllocator:
    """Allocator that trusts the reserved set only (no OS bind check)."""
    return PortAllocator(scan_range=100, is_free=lambda port: True)


@pytest.fixture
def controller(registry, allocator, settings) -> FleetController:
    return FleetController(registry, allocator, settings, vnc_password="test-vnc")


@pytest.fixture
def mock_notifier() -> MagicMock:
    notifier = MagicMock()
    notifier.send.return_value = {}
    notifier.send_test.return_value = {}
    return notifier


# ---------------------------------------------------------------------------
# Service container
# ---------------------------------------------------------------------------

@pytest.fixture
def services(mocker, tmp_path, runtime, allocator, settings):
    """ServiceContainer wired to the fake runtime, injected as global fallback."""
    from fleet.container import ServiceContainer

    container = ServiceContainer(root=tmp_path, settings=settings)
    container._runtime = runtime
    container._allocator = allocator

    mocker.patch("fleet.container._global_container", container)
    return container


# ---------------------------------------------------------------------------
# Flask test client
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def flask_app():
    """One app per session: Flask-Limiter and the Prometheus exporter register globally."""
    from fleet.app import create_app
    from fleet.container import ServiceContainer

    boot_settings = FleetSettings(security={"rate_limiting": {"enabled": False}})
    app = create_app(ServiceContainer(settings=boot_settings), start_background=False)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def app_client(flask_app, services):
    """Flask test client bound to the per-test services, sending the API key by default."""
    flask_app.extensions["services"] = services

    client = flask_app.test_client()
    _original_open = client.open

    def _open_with_key(*args, **kwargs):
        headers = kwargs.pop("headers", None)
        if headers is None:
            headers = {"X-API-Key": API_KEY}
        kwargs["headers"] = headers
        return _original_open(*args, **kwargs)

    client.open = _open_with_key
    return client
