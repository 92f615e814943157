"""
Base classes and protocols for the container runtime.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Protocol

from fleet.domain.types import ResourceSample


@dataclass
class BindMount:
    source: str
    target: str
    read_only: bool = False


@dataclass
class ContainerSpec:
    """Everything needed to start one labeled container."""

    name: str
    image: str
    labels: dict[str, str]
    ports: dict[int, int]  # container port -> host port
    mounts: list[BindMount] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    network: str | None = None
    restart_policy: str | None = None


@dataclass
class ContainerInfo:
    """Snapshot of a container as reported by the runtime."""

    container_id: str
    name: str
    status: str  # created, running, restarting, exited, paused, dead
    labels: dict[str, str]
    ports: dict[int, int]  # container port -> host port
    health: str | None = None  # healthy, unhealthy, starting, or None without healthcheck
    created_at: float = 0.0


class ContainerRuntime(Protocol):
    """Protocol defining the interface for container runtime backends."""

    def run(self, spec: ContainerSpec) -> ContainerInfo:
        """
        Create and start a container.

        Raises:
            RuntimeFailure: If the runtime rejects the call
        """
        ...

    def list(self, labels: dict[str, str]) -> list[ContainerInfo]:
        """List containers (any state) carrying all of the given labels."""
        ...

    def get(self, name: str) -> ContainerInfo | None:
        """Return a container by name, or None if it does not exist."""
        ...

    def start(self, name: str) -> None:
        ...

    def stop(self, name: str, timeout: int = 10) -> None:
        """
        Stop a container.

        Raises:
            InstanceNotFound: If the container does not exist
        """
        ...

    def remove(self, name: str) -> None:
        """
        Remove a stopped container.

        Raises:
            InstanceNotFound: If the container does not exist
        """
        ...

    def stats(self, name: str) -> ResourceSample:
        """Return a one-shot resource sample."""
        ...

    def exec(self, name: str, command: list[str]) -> tuple[int, str]:
        """Run a command inside the container, returning (exit_code, output)."""
        ...

    def logs(self, name: str, tail: int | None = None, follow: bool = False) -> Iterator[str]:
        """Yield container log lines."""
        ...
