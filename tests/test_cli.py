"""
Tests for the typer command line (fleet.cli).
"""

import json
import tarfile

import pytest
from typer.testing import CliRunner

from fleet import __version__
from fleet.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(mocker):
    """Keep pytest's log capture handlers on the root logger."""
    mocker.patch("fleet.observability.setup_json_logging")


def _make_archive(layout, name):
    layout.backups_dir.mkdir(parents=True, exist_ok=True)
    path = layout.backups_dir / name
    with tarfile.open(path, "w:gz"):
        pass
    return path


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_start(self, services, runtime):
        result = runner.invoke(app, ["start"])
        assert result.exit_code == 0
        assert "http://localhost:6080" in result.output
        assert "mt5-main" in runtime.containers

    def test_stop(self, services, runtime):
        runtime.add("main")
        result = runner.invoke(app, ["stop"])
        assert result.exit_code == 0
        assert runtime.containers == {}

    def test_scale(self, services, runtime):
        runtime.add("main")
        result = runner.invoke(app, ["scale", "3"])
        assert result.exit_code == 0
        assert "auto-2" in result.output
        assert sorted(runtime.containers) == ["mt5-auto-2", "mt5-auto-3", "mt5-main"]

    def test_scale_noop(self, services, runtime):
        runtime.add("main")
        result = runner.invoke(app, ["scale", "1"])
        assert result.exit_code == 0
        assert "already at 1" in result.output

    def test_scale_out_of_range(self, services):
        result = runner.invoke(app, ["scale", "11"])
        assert result.exit_code == 2

    def test_status_empty(self, services):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "No instances running." in result.output

    def test_status_json(self, services, runtime):
        runtime.add("main")
        runtime.add("auto-1", 6081, 5902)

        result = runner.invoke(app, ["status", "--json"])

        assert result.exit_code == 0
        rows = json.loads(result.output)
        assert [r["name"] for r in rows] == ["main", "auto-1"]
        assert rows[1]["vnc_port"] == 5902

    def test_create(self, services, runtime):
        result = runner.invoke(app, ["create", "eurusd", "7000", "7001"])
        assert result.exit_code == 0
        assert runtime.specs["mt5-eurusd"].ports == {6080: 7000, 5901: 7001}

    def test_create_conflict(self, services, runtime):
        runtime.add("main")
        result = runner.invoke(app, ["create", "main"])
        assert result.exit_code == 3

    def test_create_invalid_name(self, services):
        result = runner.invoke(app, ["create", "bad name"])
        assert result.exit_code == 2

    def test_remove_main_is_protected(self, services, runtime):
        runtime.add("main")
        result = runner.invoke(app, ["remove", "main"])
        assert result.exit_code == 2
        assert "mt5-main" in runtime.containers

    def test_remove_unknown(self, services):
        result = runner.invoke(app, ["remove", "ghost"])
        assert result.exit_code == 5

    def test_remove_keep_data(self, services, runtime, layout):
        runtime.add("auto-1", 6081, 5902)
        layout.ensure_instance_dirs("auto-1")

        result = runner.invoke(app, ["remove", "auto-1", "--keep-data"])

        assert result.exit_code == 0
        assert layout.data_dir("auto-1").exists()

    def test_logs_tail(self, services, runtime):
        runtime.add("main")
        runtime.log_lines["mt5-main"] = ["one", "two", "three"]

        result = runner.invoke(app, ["logs", "main", "--tail", "2"])

        assert result.exit_code == 0
        assert result.output.splitlines() == ["two", "three"]


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------

class TestMonitoring:

    def test_health_ok(self, services, runtime):
        runtime.add("main")
        result = runner.invoke(app, ["health", "--gate"])
        assert result.exit_code == 0
        assert "running" in result.output

    def test_health_gate_degraded(self, services, runtime):
        runtime.add("main")
        runtime.probe_codes["mt5-main"] = 7

        result = runner.invoke(app, ["health", "--gate"])

        assert result.exit_code == 1

    def test_health_without_gate_reports_only(self, services, runtime):
        runtime.add("main")
        runtime.probe_codes["mt5-main"] = 7

        result = runner.invoke(app, ["health", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["fleet_status"] == "degraded-fleet"

    def test_health_does_not_alert(self, services, runtime, mock_notifier):
        services._notifier = mock_notifier
        runner.invoke(app, ["health"])
        mock_notifier.send.assert_not_called()

    def test_metrics_json(self, services, runtime, layout):
        runtime.add("main")
        layout.ensure_instance_dirs("main")

        result = runner.invoke(app, ["metrics", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["instances"][0]["display_port"] == 6080

    def test_alerts_without_channels(self, services):
        result = runner.invoke(app, ["alerts"])
        assert result.exit_code == 0
        assert "No alert channels configured" in result.output

    def test_alerts_delivery_failure(self, services, mock_notifier):
        mock_notifier.send_test.return_value = {"email": True, "webhook": False}
        services._notifier = mock_notifier

        result = runner.invoke(app, ["alerts"])

        assert result.exit_code == 4
        assert "webhook" in result.output


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------

class TestBackups:

    def test_backup_instance(self, services, layout):
        layout.ensure_instance_dirs("auto-1")
        result = runner.invoke(app, ["backup", "auto-1"])
        assert result.exit_code == 0
        assert [a.scope for a in services.backups.list()] == ["auto-1"]

    def test_backup_unknown_instance(self, services):
        result = runner.invoke(app, ["backup", "ghost"])
        assert result.exit_code == 5

    def test_list_json(self, services, layout):
        _make_archive(layout, "auto-1_backup_20241001_080000.tar.gz")
        _make_archive(layout, "mt5_full_backup_20241020_080000.tar.gz")

        result = runner.invoke(app, ["list", "--json"])

        assert result.exit_code == 0
        names = [a["name"] for a in json.loads(result.output)]
        assert names == ["mt5_full_backup_20241020_080000.tar.gz", "auto-1_backup_20241001_080000.tar.gz"]

    def test_list_empty(self, services):
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "No backups found." in result.output

    def test_restore_declined(self, services, runtime, layout):
        runtime.add("main")
        _make_archive(layout, "mt5_full_backup_20241020_080000.tar.gz")

        result = runner.invoke(app, ["restore", "mt5_full_backup_20241020_080000.tar.gz"], input="n\n")

        assert result.exit_code == 6
        assert "mt5-main" in runtime.containers

    def test_restore_confirmed(self, services, runtime, layout):
        runtime.add("main")
        _make_archive(layout, "mt5_full_backup_20241020_080000.tar.gz")

        result = runner.invoke(app, ["restore", "mt5_full_backup_20241020_080000.tar.gz", "--yes"])

        assert result.exit_code == 0
        assert runtime.containers == {}

    def test_restore_missing_archive(self, services):
        result = runner.invoke(app, ["restore", "nope.tar.gz", "--yes"])
        assert result.exit_code == 5

    def test_restore_corrupt_archive(self, services, runtime, layout):
        runtime.add("main")
        layout.backups_dir.mkdir(parents=True)
        (layout.backups_dir / "mt5_full_backup_20241020_080000.tar.gz").write_bytes(b"garbage")

        result = runner.invoke(app, ["restore", "mt5_full_backup_20241020_080000.tar.gz", "--yes"])

        assert result.exit_code == 2
        assert "mt5-main" in runtime.containers

    def test_cleanup(self, services, layout):
        old = _make_archive(layout, "auto-1_backup_20200101_000000.tar.gz")

        result = runner.invoke(app, ["cleanup", "30"])

        assert result.exit_code == 0
        assert not old.exists()
        assert "1 backup(s)" in result.output

    def test_cleanup_rejects_negative_days(self, services):
        result = runner.invoke(app, ["cleanup", "--", "-1"])
        assert result.exit_code == 2
