"""
Read-through view of the fleet.

The registry keeps no state of its own: every call re-queries the runtime
for containers carrying the fleet label, so the controller always allocates
against the occupancy that exists right now.
"""

from __future__ import annotations

import logging

from fleet.config.settings import APP_LABEL_KEY, INSTANCE_LABEL_KEY
from fleet.domain.layout import FleetLayout
from fleet.domain.runtime.base import ContainerInfo, ContainerRuntime
from fleet.domain.types import Instance, PortPair
from fleet.errors import InstanceNotFound

logger = logging.getLogger("fleet")


class InstanceRegistry:
    """Enumerates fleet members and their metadata from the runtime."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        layout: FleetLayout,
        app_label: str = "mt5",
        display_container_port: int = 6080,
        vnc_container_port: int = 5901,
    ) -> None:
        self.runtime = runtime
        self.layout = layout
        self.app_label = app_label
        self.display_container_port = display_container_port
        self.vnc_container_port = vnc_container_port

    @property
    def selector(self) -> dict[str, str]:
        return {APP_LABEL_KEY: self.app_label}

    def container_name(self, name: str) -> str:
        """Runtime-level name of an instance's container (``mt5-main``)."""
        return f"{self.app_label}-{name}"

    def from_container(self, info: ContainerInfo) -> Instance:
        name = info.labels.get(INSTANCE_LABEL_KEY) or info.name.removeprefix(f"{self.app_label}-")
        return Instance(
            name=name,
            container_id=info.container_id,
            display_port=info.ports.get(self.display_container_port),
            vnc_port=info.ports.get(self.vnc_container_port),
            labels=dict(info.labels),
            data_dir=self.layout.data_dir(name),
            log_dir=self.layout.log_dir(name),
            runtime_status=info.status,
            created_at=info.created_at,
        )

    def list(self) -> list[Instance]:
        """Return all fleet members in creation order (oldest first)."""
        containers = [
            c for c in self.runtime.list(self.selector)
            if c.labels.get(APP_LABEL_KEY) == self.app_label
        ]
        instances = [self.from_container(c) for c in containers]
        instances.sort(key=lambda i: (i.created_at, i.name))
        return instances

    def get(self, name: str) -> Instance | None:
        for instance in self.list():
            if instance.name == name:
                return instance
        return None

    def count(self) -> int:
        return len(self.list())

    def names(self) -> set[str]:
        return {i.name for i in self.list()}

    def ports_of(self, name: str) -> PortPair:
        """
        Return the host ports held by an instance.

        Raises:
            InstanceNotFound: If no fleet member has that name
        """
        instance = self.get(name)
        if instance is None or instance.ports is None:
            raise InstanceNotFound(name)
        return instance.ports

    def occupied_ports(self) -> dict[int, str]:
        """Map every host port held by the fleet to its owning instance."""
        owners: dict[int, str] = {}
        for instance in self.list():
            for port in instance.held_ports():
                owners[port] = instance.name
        return owners
