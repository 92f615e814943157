"""Services module: health monitoring, alert delivery and backups."""

from fleet.services.notifier import AlertNotifier, EmailChannel, WebhookChannel
from fleet.services.health_monitor import (
    HealthMonitor,
    HealthReport,
    classify,
    container_state_of,
)
from fleet.services.backups import BackupArchive, BackupManager, BackupScheduler

__all__ = [
    "AlertNotifier",
    "EmailChannel",
    "WebhookChannel",
    "HealthMonitor",
    "HealthReport",
    "classify",
    "container_state_of",
    "BackupArchive",
    "BackupManager",
    "BackupScheduler",
]
