"""
Typed data structures for the fleet domain.
"""

from __future__ import annotations

import enum
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


class InstanceStatus(str, enum.Enum):
    """Derived status of an instance, recomputed on every poll."""

    CREATING = "creating"
    RUNNING = "running"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    REMOVED = "removed"


class ContainerState(str, enum.Enum):
    """Container-level health signal as seen by the runtime."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STARTING = "starting"
    ABSENT = "absent"


class FleetStatus(str, enum.Enum):
    RUNNING = "running"
    DEGRADED = "degraded-fleet"


class AlertKind(str, enum.Enum):
    INSTANCE_LOST = "instance_lost"
    INSTANCE_UNHEALTHY = "instance_unhealthy"
    INSTANCE_STUCK_STARTING = "instance_stuck_starting"
    RESOURCE_WARNING = "resource_warning"
    FLEET_DEGRADED = "fleet_degraded"
    TEST = "test"


@dataclass(frozen=True)
class PortPair:
    display_port: int
    vnc_port: int

    def as_set(self) -> set[int]:
        return {self.display_port, self.vnc_port}


@dataclass
class Instance:
    """A fleet member as reported by the container runtime."""

    name: str
    container_id: str
    display_port: int | None
    vnc_port: int | None
    labels: dict[str, str]
    data_dir: Path
    log_dir: Path
    runtime_status: str = "running"
    created_at: float = 0.0

    @property
    def ports(self) -> PortPair | None:
        if self.display_port is None or self.vnc_port is None:
            return None
        return PortPair(self.display_port, self.vnc_port)

    def held_ports(self) -> set[int]:
        return {p for p in (self.display_port, self.vnc_port) if p is not None}

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["data_dir"] = str(self.data_dir)
        data["log_dir"] = str(self.log_dir)
        return data


@dataclass
class ResourceSample:
    cpu_percent: float
    memory_percent: float
    memory_usage: int
    memory_limit: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HealthRecord:
    """Result of probing one instance during one poll cycle."""

    name: str
    container_state: ContainerState
    service_reachable: bool
    status: InstanceStatus
    resources: ResourceSample | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "container_state": self.container_state.value,
            "service_reachable": self.service_reachable,
            "status": self.status.value,
            "resources": self.resources.to_dict() if self.resources else None,
            "warnings": list(self.warnings),
            "error": self.error,
        }


@dataclass
class Alert:
    kind: AlertKind
    subject: str
    message: str
    instance: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "subject": self.subject,
            "message": self.message,
            "instance": self.instance,
            "timestamp": self.timestamp,
        }


@dataclass
class ScaleResult:
    target: int
    created: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.removed)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
