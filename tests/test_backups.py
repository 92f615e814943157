"""
Tests for fleet.services.backups (archive, restore, retention).
"""

import io
import tarfile
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from fleet.errors import ArchiveNotFound, ConfirmationDeclined, InstanceNotFound, InvalidArchive
from fleet.services.backups import BackupManager, BackupScheduler, parse_archive


NOW = datetime(2024, 10, 27, 12, 0, 0)


@pytest.fixture
def stop_fleet():
    return MagicMock(return_value=[])


@pytest.fixture
def manager(layout, stop_fleet):
    return BackupManager(
        layout,
        app_label="mt5",
        topology_files=["docker-compose.yml", ".env", "fleet.yml"],
        stop_fleet=stop_fleet,
        clock=lambda: NOW,
    )


@pytest.fixture
def populated(layout):
    """Instance auto-1 with data and logs, plus shared configs and topology."""
    data = layout.data_dir("auto-1")
    logs = layout.log_dir("auto-1")
    (data / "profiles").mkdir(parents=True)
    logs.mkdir(parents=True)
    layout.configs_dir.mkdir(parents=True)
    (data / "profiles" / "terminal.ini").write_bytes(b"[Common]\nLogin=12345\n")
    (data / "history.hcc").write_bytes(bytes(range(256)))
    (logs / "terminal.log").write_text("started\n")
    (layout.configs_dir / "servers.dat").write_text("demo")
    (layout.root / "docker-compose.yml").write_text("services: {}\n")
    return layout


def _members(path):
    with tarfile.open(path, "r:gz") as tar:
        return set(tar.getnames())


def _make_archive(layout, name):
    layout.backups_dir.mkdir(parents=True, exist_ok=True)
    path = layout.backups_dir / name
    with tarfile.open(path, "w:gz"):
        pass
    return path


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------

class TestBackup:

    def test_instance_backup(self, manager, populated):
        archive = manager.backup("auto-1")

        assert archive.name == "auto-1_backup_20241027_120000.tar.gz"
        assert archive.scope == "auto-1"
        members = _members(archive.path)
        assert "data/auto-1/profiles/terminal.ini" in members
        assert "logs/auto-1/terminal.log" in members
        assert "configs/servers.dat" in members
        assert "docker-compose.yml" not in members

    def test_full_backup_includes_topology(self, manager, populated):
        archive = manager.backup()

        assert archive.name == "mt5_full_backup_20241027_120000.tar.gz"
        members = _members(archive.path)
        assert "data/auto-1/history.hcc" in members
        assert "docker-compose.yml" in members

    def test_missing_paths_are_skipped(self, manager, populated):
        """.env and fleet.yml do not exist; the archive is still created."""
        archive = manager.backup()

        members = _members(archive.path)
        assert ".env" not in members
        assert "fleet.yml" not in members

    def test_unknown_instance(self, manager, layout):
        with pytest.raises(InstanceNotFound):
            manager.backup("ghost")

    def test_same_second_does_not_overwrite(self, manager, populated):
        first = manager.backup("auto-1")
        second = manager.backup("auto-1")

        assert first.path != second.path
        assert second.name == "auto-1_backup_20241027_120000-1.tar.gz"
        assert first.path.exists()


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

class TestRestore:

    def test_round_trip_is_byte_identical(self, manager, populated, stop_fleet):
        data = populated.data_dir("auto-1")
        logs = populated.log_dir("auto-1")
        originals = {
            p.relative_to(populated.root): p.read_bytes()
            for p in list(data.rglob("*")) + list(logs.rglob("*"))
            if p.is_file()
        }
        archive = manager.backup("auto-1")

        populated.purge_instance_dirs("auto-1")
        manager.restore(archive.path, confirmed=True)

        restored = {
            rel: (populated.root / rel).read_bytes() for rel in originals
        }
        assert restored == originals
        stop_fleet.assert_called_once()

    def test_requires_confirmation(self, manager, populated, stop_fleet):
        archive = manager.backup("auto-1")

        with pytest.raises(ConfirmationDeclined):
            manager.restore(archive.path)
        stop_fleet.assert_not_called()

    def test_missing_archive(self, manager):
        with pytest.raises(ArchiveNotFound):
            manager.restore("/nonexistent/archive.tar.gz", confirmed=True)

    def test_resolve_bare_name(self, manager, populated):
        archive = manager.backup("auto-1")
        assert manager.resolve(archive.name) == archive.path

    @pytest.mark.parametrize("target", ["..", "."])
    def test_directory_is_not_an_archive(self, manager, layout, stop_fleet, target):
        layout.backups_dir.mkdir(parents=True)

        with pytest.raises(ArchiveNotFound):
            manager.restore(target, confirmed=True)
        with pytest.raises(ArchiveNotFound):
            manager.restore(layout.backups_dir, confirmed=True)
        stop_fleet.assert_not_called()

    def test_corrupt_archive_leaves_fleet_running(self, manager, layout, stop_fleet):
        layout.backups_dir.mkdir(parents=True)
        path = layout.backups_dir / "auto-1_backup_20241027_120000.tar.gz"
        path.write_bytes(b"this is not a gzip stream")

        with pytest.raises(InvalidArchive) as exc:
            manager.restore(path.name, confirmed=True)

        assert exc.value.exit_code == 2
        stop_fleet.assert_not_called()

    def test_truncated_archive_leaves_fleet_running(self, manager, populated, stop_fleet):
        archive = manager.backup("auto-1")
        archive.path.write_bytes(archive.path.read_bytes()[:40])

        with pytest.raises(InvalidArchive):
            manager.restore(archive.path, confirmed=True)
        stop_fleet.assert_not_called()

    def test_unsafe_member_leaves_fleet_running(self, manager, layout, stop_fleet):
        layout.backups_dir.mkdir(parents=True)
        path = layout.backups_dir / "mt5_full_backup_20241027_120000.tar.gz"
        payload = b"owned"
        with tarfile.open(path, "w:gz") as tar:
            info = tarfile.TarInfo("../escape.txt")
            info.size = len(payload)
            tar.addfile(info, io.BytesIO(payload))

        with pytest.raises(InvalidArchive):
            manager.restore(path, confirmed=True)

        stop_fleet.assert_not_called()
        assert not (layout.root.parent / "escape.txt").exists()


# ---------------------------------------------------------------------------
# List / cleanup
# ---------------------------------------------------------------------------

class TestListAndCleanup:

    def test_list_newest_first(self, manager, layout):
        _make_archive(layout, "auto-1_backup_20241001_080000.tar.gz")
        _make_archive(layout, "mt5_full_backup_20241020_080000.tar.gz")
        _make_archive(layout, "notes.tar.gz")

        names = [a.name for a in manager.list()]

        assert names == [
            "mt5_full_backup_20241020_080000.tar.gz",
            "auto-1_backup_20241001_080000.tar.gz",
        ]

    def test_list_without_backups_dir(self, manager):
        assert manager.list() == []

    def test_cleanup_removes_only_old_archives(self, manager, layout):
        old = _make_archive(layout, "auto-1_backup_20241010_120000.tar.gz")
        recent = _make_archive(layout, "auto-1_backup_20241025_120000.tar.gz")

        deleted = manager.cleanup(7)

        assert [a.path for a in deleted] == [old]
        assert not old.exists()
        assert recent.exists()

    def test_cleanup_has_no_keep_newest_floor(self, manager, layout):
        only = _make_archive(layout, "mt5_full_backup_20240101_000000.tar.gz")

        manager.cleanup(30)

        assert not only.exists()

    def test_parse_rejects_bad_timestamp(self, tmp_path):
        assert parse_archive(tmp_path / "x_backup_20241399_000000.tar.gz") is None


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class TestScheduler:

    def test_disabled_by_default(self):
        scheduler = BackupScheduler(MagicMock(), interval_hours=0)

        scheduler.start()

        assert scheduler.enabled is False
        assert scheduler._thread is None

    def test_run_once_backs_up_then_cleans(self):
        backups = MagicMock()
        scheduler = BackupScheduler(backups, interval_hours=24, retention_days=14)

        scheduler.run_once()

        backups.backup.assert_called_once_with()
        backups.cleanup.assert_called_once_with(14)

    def test_stop_joins_thread(self):
        scheduler = BackupScheduler(MagicMock(), interval_hours=24)

        scheduler.start()
        scheduler.stop(timeout=5)

        assert scheduler._thread is None
        assert scheduler.running is False
