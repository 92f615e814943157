"""Domain module: instances, ports, registry, controller and runtime."""

from fleet.domain.types import (
    Alert,
    AlertKind,
    ContainerState,
    FleetStatus,
    HealthRecord,
    Instance,
    InstanceStatus,
    PortPair,
    ResourceSample,
    ScaleResult,
)
from fleet.domain.layout import FleetLayout
from fleet.domain.ports import PortAllocator, is_port_bindable
from fleet.domain.registry import InstanceRegistry
from fleet.domain.controller import FleetController, validate_instance_name

__all__ = [
    "Alert",
    "AlertKind",
    "ContainerState",
    "FleetStatus",
    "HealthRecord",
    "Instance",
    "InstanceStatus",
    "PortPair",
    "ResourceSample",
    "ScaleResult",
    "FleetLayout",
    "PortAllocator",
    "is_port_bindable",
    "InstanceRegistry",
    "FleetController",
    "validate_instance_name",
]
