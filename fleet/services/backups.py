"""
Backup archives of instance state and fleet topology.

Archives are gzip tarballs under ``backups/`` named
``<scope>_backup_<YYYYmmdd_HHMMSS>.tar.gz``; member paths are relative to
the project directory so a restore extracts them back in place.
"""

from __future__ import annotations

import logging
import re
import tarfile
import threading
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from fleet.config.settings import ARCHIVE_TIMESTAMP_FORMAT
from fleet.domain.controller import validate_instance_name
from fleet.domain.layout import FleetLayout
from fleet.errors import ArchiveNotFound, ConfirmationDeclined, InstanceNotFound, InvalidArchive
from fleet.observability import BACKUPS_TOTAL

logger = logging.getLogger("fleet")

ARCHIVE_PATTERN = re.compile(
    r"^(?P<scope>.+)_backup_(?P<timestamp>\d{8}_\d{6})(?:-\d+)?\.tar\.gz$"
)


@dataclass
class BackupArchive:
    path: Path
    scope: str
    created_at: datetime
    size: int = 0

    @property
    def name(self) -> str:
        return self.path.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "scope": self.scope,
            "created_at": self.created_at.isoformat(),
            "size": self.size,
        }


def parse_archive(path: Path) -> BackupArchive | None:
    """Build a BackupArchive from a file name, or None if it does not match."""
    match = ARCHIVE_PATTERN.match(path.name)
    if not match:
        return None
    try:
        created_at = datetime.strptime(match.group("timestamp"), ARCHIVE_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    try:
        size = path.stat().st_size
    except OSError:
        size = 0
    return BackupArchive(path=path, scope=match.group("scope"), created_at=created_at, size=size)


class BackupManager:
    """Creates, lists, restores and prunes backup archives."""

    def __init__(
        self,
        layout: FleetLayout,
        app_label: str = "mt5",
        topology_files: list[str] | None = None,
        stop_fleet: Callable[[], object] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.layout = layout
        self.app_label = app_label
        self.topology_files = list(topology_files or [])
        self.stop_fleet = stop_fleet
        self._clock = clock

    @property
    def full_scope(self) -> str:
        return f"{self.app_label}_full"

    def _archive_path(self, scope: str, now: datetime) -> Path:
        stem = f"{scope}_backup_{now.strftime(ARCHIVE_TIMESTAMP_FORMAT)}"
        path = self.layout.backups_dir / f"{stem}.tar.gz"
        suffix = 1
        while path.exists():
            path = self.layout.backups_dir / f"{stem}-{suffix}.tar.gz"
            suffix += 1
        return path

    def backup(self, scope: str | None = None) -> BackupArchive:
        """
        Archive one instance, or the whole fleet when scope is None.

        Missing sub-paths are skipped and logged; the archive holds
        whatever could be read.

        Raises:
            InstanceNotFound: If scope names an instance without a data directory
        """
        root = self.layout.root
        if scope is not None:
            validate_instance_name(scope)
            if not self.layout.data_dir(scope).is_dir():
                raise InstanceNotFound(scope)
            members = [f"data/{scope}", f"logs/{scope}", "configs"]
            label, kind = scope, "instance"
        else:
            members = ["data", "logs", "configs", *self.topology_files]
            label, kind = self.full_scope, "full"

        now = self._clock()
        self.layout.backups_dir.mkdir(parents=True, exist_ok=True)
        path = self._archive_path(label, now)
        logger.info(f"Creating backup {path.name}...")

        with tarfile.open(path, "w:gz") as tar:
            for member in members:
                source = root / member
                if not source.exists():
                    logger.warning(f"Backup: skipping missing path {member}")
                    continue
                try:
                    tar.add(source, arcname=member)
                except OSError as e:
                    logger.warning(f"Backup: skipping {member}: {e}")

        BACKUPS_TOTAL.labels(kind=kind).inc()
        archive = BackupArchive(path=path, scope=label, created_at=now, size=path.stat().st_size)
        logger.info(f"Backup created: {path} ({archive.size} bytes)")
        return archive

    def resolve(self, archive_path: str | Path) -> Path:
        """Accept an absolute path, a relative path or a bare archive name."""
        path = Path(archive_path)
        if path.is_file():
            return path
        candidate = self.layout.backups_dir / path.name
        if candidate.is_file():
            return candidate
        raise ArchiveNotFound(archive_path)

    def verify(self, path: Path) -> None:
        """
        Read every member header and check it extracts inside the project.

        Raises:
            InvalidArchive: If the archive is corrupt or holds unsafe members
        """
        root = str(self.layout.root)
        try:
            with tarfile.open(path, "r:gz") as tar:
                for member in tar.getmembers():
                    tarfile.data_filter(member, root)
        except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
            raise InvalidArchive(path.name, e) from e

    def restore(self, archive_path: str | Path, confirmed: bool = False) -> BackupArchive:
        """
        Stop the fleet and extract an archive over the project directory.

        The archive is verified before anything is stopped. Instances are
        not restarted afterwards.

        Raises:
            ArchiveNotFound: If the archive does not exist
            ConfirmationDeclined: If the restore was not confirmed
            InvalidArchive: If the archive cannot be read
        """
        path = self.resolve(archive_path)
        if not confirmed:
            raise ConfirmationDeclined(
                f"Restoring {path.name} overwrites current instance data; confirmation required"
            )
        self.verify(path)

        if self.stop_fleet is not None:
            logger.info("Stopping fleet before restore...")
            self.stop_fleet()

        logger.info(f"Restoring from {path}...")
        with tarfile.open(path, "r:gz") as tar:
            tar.extractall(self.layout.root, filter="data")

        archive = parse_archive(path) or BackupArchive(
            path=path,
            scope="unknown",
            created_at=datetime.fromtimestamp(path.stat().st_mtime),
            size=path.stat().st_size,
        )
        logger.info("Restore completed. Start the fleet to bring instances back.")
        return archive

    def list(self) -> list[BackupArchive]:
        """Return archives newest first; files with unparseable names are ignored."""
        if not self.layout.backups_dir.is_dir():
            return []
        archives = [
            archive
            for archive in (parse_archive(p) for p in self.layout.backups_dir.glob("*.tar.gz"))
            if archive is not None
        ]
        archives.sort(key=lambda a: (a.created_at, a.name), reverse=True)
        return archives

    def cleanup(self, max_age_days: int = 30) -> list[BackupArchive]:
        """Delete archives older than ``max_age_days``; returns what was deleted."""
        cutoff = self._clock() - timedelta(days=max_age_days)
        deleted = []
        for archive in self.list():
            if archive.created_at < cutoff:
                archive.path.unlink(missing_ok=True)
                deleted.append(archive)
                logger.info(f"Deleted old backup {archive.name}")
        logger.info(f"Backup cleanup: {len(deleted)} archive(s) older than {max_age_days} days removed")
        return deleted


class BackupScheduler:
    """Periodic full backup followed by retention cleanup."""

    def __init__(self, manager: BackupManager, interval_hours: float, retention_days: int = 30) -> None:
        self.manager = manager
        self.interval_hours = interval_hours
        self.retention_days = retention_days
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.running = False

    @property
    def enabled(self) -> bool:
        return self.interval_hours > 0

    def run_once(self) -> None:
        self.manager.backup()
        self.manager.cleanup(self.retention_days)

    def _loop(self) -> None:
        self.running = True
        interval = self.interval_hours * 3600
        try:
            while not self._stop_event.wait(interval):
                try:
                    self.run_once()
                except Exception as e:
                    logger.error(f"Scheduled backup failed: {e}")
        finally:
            self.running = False

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduled backups disabled")
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="fleet-backups", daemon=True)
        self._thread.start()
        logger.info(f"Backup scheduler started (every {self.interval_hours}h)")

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
