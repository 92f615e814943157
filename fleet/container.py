"""
Lightweight DI container for fleet services.

Stored in ``app.extensions['services']`` during Flask context, with a
global fallback for the CLI and background threads that run outside a
request context.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fleet.config.models import FleetSettings
    from fleet.domain.controller import FleetController
    from fleet.domain.layout import FleetLayout
    from fleet.domain.ports import PortAllocator
    from fleet.domain.registry import InstanceRegistry
    from fleet.domain.runtime.base import ContainerRuntime
    from fleet.services.backups import BackupManager, BackupScheduler
    from fleet.services.health_monitor import HealthMonitor
    from fleet.services.notifier import AlertNotifier

logger = logging.getLogger("fleet")


class ServiceContainer:
    """Lightweight service container holding shared service instances."""

    def __init__(self, root: Path | None = None, settings: FleetSettings | None = None) -> None:
        self._root = root
        self._settings = settings
        self._runtime: ContainerRuntime | None = None
        self._layout: FleetLayout | None = None
        self._registry: InstanceRegistry | None = None
        self._allocator: PortAllocator | None = None
        self._controller: FleetController | None = None
        self._notifier: AlertNotifier | None = None
        self._monitor: HealthMonitor | None = None
        self._backups: BackupManager | None = None
        self._scheduler: BackupScheduler | None = None

    @property
    def settings(self) -> FleetSettings:
        if self._settings is None:
            from fleet.config.loader import FleetConfig

            self._settings = FleetConfig.settings()
        return self._settings

    @property
    def runtime(self) -> ContainerRuntime:
        if self._runtime is None:
            from fleet.domain.runtime.factory import get_runtime

            self._runtime = get_runtime()
        return self._runtime

    @property
    def layout(self) -> FleetLayout:
        if self._layout is None:
            from fleet.config.loader import project_dir
            from fleet.domain.layout import FleetLayout

            self._layout = FleetLayout(self._root or project_dir())
        return self._layout

    @property
    def registry(self) -> InstanceRegistry:
        if self._registry is None:
            from fleet.domain.registry import InstanceRegistry

            settings = self.settings
            self._registry = InstanceRegistry(
                self.runtime,
                self.layout,
                app_label=settings.fleet.label,
                display_container_port=settings.ports.display_container_port,
                vnc_container_port=settings.ports.vnc_container_port,
            )
        return self._registry

    @property
    def allocator(self) -> PortAllocator:
        if self._allocator is None:
            from fleet.domain.ports import PortAllocator

            self._allocator = PortAllocator(scan_range=self.settings.ports.scan_range)
        return self._allocator

    @property
    def controller(self) -> FleetController:
        if self._controller is None:
            from fleet.config.loader import vnc_password
            from fleet.domain.controller import FleetController

            self._controller = FleetController(
                self.registry,
                self.allocator,
                self.settings,
                vnc_password=vnc_password(),
            )
        return self._controller

    @property
    def notifier(self) -> AlertNotifier:
        if self._notifier is None:
            from fleet.services.notifier import AlertNotifier

            self._notifier = AlertNotifier(self.settings.alerts)
        return self._notifier

    @property
    def monitor(self) -> HealthMonitor:
        if self._monitor is None:
            from fleet.services.health_monitor import HealthMonitor

            self._monitor = HealthMonitor(self.registry, self.notifier, self.settings.monitor)
        return self._monitor

    @property
    def backups(self) -> BackupManager:
        if self._backups is None:
            from fleet.services.backups import BackupManager

            self._backups = BackupManager(
                self.layout,
                app_label=self.settings.fleet.label,
                topology_files=self.settings.backup.topology_files,
                stop_fleet=self.controller.stop_all,
            )
        return self._backups

    @property
    def scheduler(self) -> BackupScheduler:
        if self._scheduler is None:
            from fleet.services.backups import BackupScheduler

            backup_cfg = self.settings.backup
            self._scheduler = BackupScheduler(
                self.backups,
                interval_hours=backup_cfg.interval_hours,
                retention_days=backup_cfg.retention_days,
            )
        return self._scheduler

    def monitor_log_path(self) -> Path:
        path = Path(self.settings.monitor.log_file)
        return path if path.is_absolute() else self.layout.root / path

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop background services; in-flight work is allowed to finish."""
        if self._monitor is not None:
            self._monitor.stop(timeout)
        if self._scheduler is not None:
            self._scheduler.stop(timeout)
        logger.info("Background services stopped")


# Fallback for the CLI and background threads (set once at startup)
_global_container: ServiceContainer | None = None


def get_services() -> ServiceContainer:
    """Return the service container.

    Tries ``current_app.extensions['services']`` first, then falls back
    to the module-level ``_global_container``, creating it on first use.
    """
    global _global_container

    try:
        from flask import current_app

        return current_app.extensions["services"]
    except (RuntimeError, KeyError):
        pass
    if _global_container is None:
        _global_container = ServiceContainer()
    return _global_container
