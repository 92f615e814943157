"""
Fleet controller: creates, removes and scales instances.

Every mutating operation runs under one re-entrant lock. Port allocation
reads a registry snapshot that goes stale as soon as another create binds
a port, so mutations must never interleave.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import Any

from fleet.config.models import FleetSettings
from fleet.config.settings import (
    APP_LABEL_KEY,
    DEFAULT_VNC_PASSWORD,
    INSTANCE_LABEL_KEY,
    INSTANCE_NAME_PATTERN,
    MAX_INSTANCE_NAME_LENGTH,
)
from fleet.domain.ports import PortAllocator
from fleet.domain.registry import InstanceRegistry
from fleet.domain.runtime.base import BindMount, ContainerSpec
from fleet.domain.types import Instance, ScaleResult
from fleet.errors import (
    FleetError,
    InstanceNotFound,
    InvalidName,
    InvalidTarget,
    NameConflict,
    PortConflict,
    ProtectedInstance,
)

logger = logging.getLogger("fleet")


def validate_instance_name(name: str) -> str:
    """
    Validate an instance name.

    Args:
        name: The instance name to validate

    Returns:
        The validated name

    Raises:
        InvalidName: If the name is empty, too long or has invalid characters
    """
    if not name:
        raise InvalidName("Instance name is required")

    if len(name) > MAX_INSTANCE_NAME_LENGTH:
        raise InvalidName(f"Instance name exceeds maximum length of {MAX_INSTANCE_NAME_LENGTH}")

    if not INSTANCE_NAME_PATTERN.match(name):
        raise InvalidName("Instance name contains invalid characters")

    return name


class FleetController:
    """Converges the set of running instances toward what the operator asks for."""

    def __init__(
        self,
        registry: InstanceRegistry,
        allocator: PortAllocator,
        settings: FleetSettings,
        vnc_password: str = DEFAULT_VNC_PASSWORD,
    ) -> None:
        self.registry = registry
        self.runtime = registry.runtime
        self.layout = registry.layout
        self.allocator = allocator
        self.settings = settings
        self.vnc_password = vnc_password
        self._lock = threading.RLock()

    @property
    def main_name(self) -> str:
        return self.settings.fleet.main_name

    def is_auto_instance(self, name: str) -> bool:
        prefix = self.settings.fleet.auto_prefix
        return name.startswith(prefix) and name[len(prefix):].isdigit()

    def _auto_index(self, name: str) -> int:
        return int(name[len(self.settings.fleet.auto_prefix):])

    # ------------------------------------------------------------------
    # Create / remove
    # ------------------------------------------------------------------

    def create_instance(
        self,
        name: str,
        port: int | None = None,
        vnc_port: int | None = None,
        claimed: set[int] | None = None,
    ) -> Instance:
        """
        Create and start a new instance.

        Args:
            name: Instance name
            port: Host port for the browser display endpoint (auto if None)
            vnc_port: Host port for the VNC endpoint (auto if None)
            claimed: Ports already handed out earlier in the same batch; the
                new instance's ports are added to it

        Returns:
            The created Instance

        Raises:
            NameConflict: If the name is already part of the fleet
            PortConflict: If an explicit port is held by another instance
            PortExhaustion: If no free port is left in the scan window
            RuntimeFailure: If the container could not be started
        """
        validate_instance_name(name)
        with self._lock:
            instances = self.registry.list()
            if any(i.name == name for i in instances):
                raise NameConflict(name)

            owners: dict[int, str] = {}
            for instance in instances:
                for held in instance.held_ports():
                    owners[held] = instance.name
            pending = claimed if claimed is not None else set()
            for explicit in (port, vnc_port):
                if explicit is None:
                    continue
                if explicit in owners:
                    raise PortConflict(explicit, owners[explicit])
                if explicit in pending:
                    raise PortConflict(explicit, "pending instance")
            if port is not None and port == vnc_port:
                raise PortConflict(port, name)

            reserved = set(owners) | pending
            ports_cfg = self.settings.ports
            if port is None and vnc_port is None:
                pair = self.allocator.allocate_pair(ports_cfg.display_base, ports_cfg.vnc_base, reserved)
                port, vnc_port = pair.display_port, pair.vnc_port
            elif port is None:
                port = self.allocator.allocate(ports_cfg.display_base, reserved | {vnc_port})
            elif vnc_port is None:
                vnc_port = self.allocator.allocate(ports_cfg.vnc_base, reserved | {port})

            logger.info(f"Creating instance {name} on port {port} (VNC: {vnc_port})")
            data_dir, log_dir = self.layout.ensure_instance_dirs(name)

            runtime_cfg = self.settings.runtime
            spec = ContainerSpec(
                name=self.registry.container_name(name),
                image=runtime_cfg.image,
                labels={APP_LABEL_KEY: self.registry.app_label, INSTANCE_LABEL_KEY: name},
                ports={
                    ports_cfg.display_container_port: port,
                    ports_cfg.vnc_container_port: vnc_port,
                },
                mounts=[
                    BindMount(str(data_dir), runtime_cfg.mounts.data),
                    BindMount(str(log_dir), runtime_cfg.mounts.logs),
                    BindMount(str(self.layout.configs_dir), runtime_cfg.mounts.configs, read_only=True),
                ],
                environment={
                    "INSTANCE_NAME": name,
                    "VNC_PASSWORD": self.vnc_password,
                },
                network=runtime_cfg.network or None,
                restart_policy=runtime_cfg.restart_policy or None,
            )
            # A failed run leaves no labeled container behind, so the
            # instance never counts toward the fleet
            info = self.runtime.run(spec)
            pending.update({port, vnc_port})

            logger.info(f"Instance {name} created. Access via: http://localhost:{port}")
            return self.registry.from_container(info)

    def remove_instance(self, name: str, purge: bool = True) -> None:
        """
        Stop and delete an instance, then delete its directories.

        Args:
            name: Instance name
            purge: Also delete the instance's data and log directories

        Raises:
            ProtectedInstance: If name is the main instance
            InstanceNotFound: If neither a container nor directories exist
        """
        if name == self.main_name:
            raise ProtectedInstance(name)
        validate_instance_name(name)

        with self._lock:
            instance = self.registry.get(name)
            if instance is not None:
                self._discard(instance.container_id, name)
            else:
                has_dirs = self.layout.data_dir(name).exists() or self.layout.log_dir(name).exists()
                if not (purge and has_dirs):
                    raise InstanceNotFound(name)
                logger.info(f"Container for {name} already gone, purging directories only")

            if purge:
                self.layout.purge_instance_dirs(name)
            logger.info(f"Instance {name} removed")

    def _discard(self, container: str, name: str) -> None:
        """Stop and remove a container; a container that is already gone is fine."""
        try:
            self.runtime.stop(container, timeout=self.settings.runtime.stop_timeout)
        except InstanceNotFound:
            logger.info(f"Container for {name} already stopped")
        try:
            self.runtime.remove(container)
        except InstanceNotFound:
            logger.info(f"Container for {name} already removed")

    # ------------------------------------------------------------------
    # Scaling
    # ------------------------------------------------------------------

    def scale_to(self, target: int) -> ScaleResult:
        """
        Converge the fleet size to ``target``.

        Scale-up adds ``auto-<n>`` instances; scale-down removes auto
        instances, most recently created first, and keeps their directories.

        Raises:
            InvalidTarget: If target is out of range, or reaching it would
                require removing non-auto instances
        """
        max_instances = self.settings.fleet.max_instances
        if isinstance(target, bool) or not isinstance(target, int) or not 0 <= target <= max_instances:
            raise InvalidTarget(f"Invalid instance count. Must be between 0 and {max_instances}")

        with self._lock:
            instances = self.registry.list()
            current = len(instances)
            result = ScaleResult(target=target)
            logger.info(f"Current instances: {current}, Target: {target}")

            if target > current:
                taken = {i.name for i in instances}
                claimed: set[int] = set()
                index = current
                for _ in range(target - current):
                    index += 1
                    while f"{self.settings.fleet.auto_prefix}{index}" in taken:
                        index += 1
                    name = f"{self.settings.fleet.auto_prefix}{index}"
                    self.create_instance(name, claimed=claimed)
                    taken.add(name)
                    result.created.append(name)

            elif target < current:
                excess = current - target
                autos = [i for i in instances if self.is_auto_instance(i.name)]
                if len(autos) < excess:
                    raise InvalidTarget(
                        f"Cannot scale to {target}: only {len(autos)} auto instances can be removed "
                        f"({current - len(autos)} are named instances; use 'remove' or 'stop')"
                    )
                autos.sort(key=lambda i: (i.created_at, self._auto_index(i.name)), reverse=True)
                for instance in autos[:excess]:
                    logger.info(f"Removing instance: {instance.name}")
                    self._discard(instance.container_id, instance.name)
                    result.removed.append(instance.name)

            logger.info(
                f"Scaling completed: created={len(result.created)} removed={len(result.removed)}"
            )
            return result

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def start_main(self) -> Instance:
        """Start the main instance, creating it on the base ports if needed."""
        with self._lock:
            instance = self.registry.get(self.main_name)
            if instance is None:
                logger.info("Starting main instance...")
                return self.create_instance(self.main_name)
            if instance.runtime_status != "running":
                logger.info(f"Restarting stopped main instance ({instance.runtime_status})")
                self.runtime.start(instance.container_id)
                return self.registry.get(self.main_name) or instance
            return instance

    def stop_all(self) -> list[str]:
        """Stop and remove every fleet container; directories are kept."""
        with self._lock:
            logger.info("Stopping all instances...")
            stopped = []
            for instance in self.registry.list():
                self._discard(instance.container_id, instance.name)
                stopped.append(instance.name)
            logger.info(f"All instances stopped ({len(stopped)})")
            return stopped

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def status(self) -> list[dict[str, Any]]:
        """Instances with their latest resource sample (best effort)."""
        rows = []
        for instance in self.registry.list():
            row = instance.to_dict()
            row["resources"] = None
            if instance.runtime_status == "running":
                try:
                    row["resources"] = self.runtime.stats(instance.container_id).to_dict()
                except FleetError as e:
                    logger.warning(f"Could not read stats for {instance.name}: {e}")
            rows.append(row)
        return rows

    def logs(self, name: str, tail: int | None = None, follow: bool = False) -> Iterator[str]:
        instance = self.registry.get(name)
        if instance is None:
            raise InstanceNotFound(name)
        return self.runtime.logs(instance.container_id, tail=tail, follow=follow)
