"""
Tests for fleet.config (pydantic settings and the fleet.yml loader).
"""

import pytest
import yaml

from fleet.config.loader import FleetConfig, config_file, project_dir, vnc_password
from fleet.config.models import FleetSettings
from fleet.config.settings import get_env


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """Point the loader at an empty project dir and drop any cached config."""
    monkeypatch.setenv("FLEET_PROJECT_DIR", str(tmp_path))
    for var in ("FLEET_CONFIG_FILE", "ALERT_EMAIL", "WEBHOOK_URL", "CHECK_INTERVAL",
                "FLEET_API_KEY", "LOG_LEVEL", "VNC_PASSWORD"):
        monkeypatch.delenv(var, raising=False)
    FleetConfig._config = {}
    FleetConfig._typed_config = None
    FleetConfig._last_load = 0
    yield tmp_path
    FleetConfig._config = {}
    FleetConfig._typed_config = None
    FleetConfig._last_load = 0


def _write_config(path, data):
    path.write_text(yaml.safe_dump(data))


class TestFleetSettingsDefaults:

    def test_default_fleet(self):
        s = FleetSettings()
        assert s.fleet.label == "mt5"
        assert s.fleet.max_instances == 10
        assert s.fleet.main_name == "main"
        assert s.fleet.auto_prefix == "auto-"

    def test_default_ports(self):
        s = FleetSettings()
        assert s.ports.display_base == 6080
        assert s.ports.vnc_base == 5901
        assert s.ports.scan_range == 100

    def test_default_runtime(self):
        s = FleetSettings()
        assert s.runtime.image == "mt5-docker:latest"
        assert s.runtime.network == "clouddesk_mt5-network"
        assert s.runtime.restart_policy == "unless-stopped"
        assert s.runtime.mounts.configs == "/home/mt5user/configs"

    def test_default_monitor(self):
        s = FleetSettings()
        assert s.monitor.interval == 30
        assert s.monitor.probe_timeout == 5
        assert s.monitor.grace_period == 120
        assert s.monitor.cpu_threshold == 80.0
        assert s.monitor.memory_threshold == 80.0

    def test_default_backup(self):
        s = FleetSettings()
        assert s.backup.retention_days == 30
        assert s.backup.interval_hours == 0
        assert "docker-compose.yml" in s.backup.topology_files

    def test_security_fails_closed_by_default(self):
        assert FleetSettings().security.api_key == ""


class TestFleetSettingsPartial:

    def test_partial_monitor(self):
        s = FleetSettings(monitor={"interval": 10})
        assert s.monitor.interval == 10
        assert s.monitor.grace_period == 120

    def test_nested_mounts(self):
        s = FleetSettings(runtime={"mounts": {"data": "/srv/data"}})
        assert s.runtime.mounts.data == "/srv/data"
        assert s.runtime.mounts.logs == "/home/mt5user/logs"

    def test_extra_keys_ignored(self):
        s = FleetSettings(fleet={"label": "desk", "unknown_key": 1}, unknown_section={})
        assert s.fleet.label == "desk"


class TestLoader:

    def test_defaults_without_file(self, fresh_config):
        settings = FleetConfig.settings()
        assert settings == FleetSettings()

    def test_file_merged_over_defaults(self, fresh_config):
        _write_config(fresh_config / "fleet.yml", {
            "fleet": {"max_instances": 4},
            "alerts": {"webhook_url": "https://hooks.example/x"},
        })

        settings = FleetConfig.settings()

        assert settings.fleet.max_instances == 4
        assert settings.fleet.label == "mt5"
        assert settings.alerts.webhook_url == "https://hooks.example/x"
        assert FleetConfig.get("alerts", "smtp_port") == 25

    def test_broken_file_falls_back_to_defaults(self, fresh_config):
        (fresh_config / "fleet.yml").write_text("fleet: [unclosed")

        assert FleetConfig.settings().fleet.max_instances == 10

    @pytest.mark.parametrize("content", [
        {"monitor": {"interval": "abc"}},
        {"fleet": {"max_instances": "lots"}},
        ["not", "a", "mapping"],
    ])
    def test_invalid_values_fall_back_to_defaults(self, fresh_config, content):
        _write_config(fresh_config / "fleet.yml", content)

        first = FleetConfig.settings()
        second = FleetConfig.settings()

        assert first.monitor.interval == 30
        assert second.fleet.max_instances == 10
        assert FleetConfig.get("monitor", "interval") == 30

    def test_env_overrides(self, fresh_config, monkeypatch):
        _write_config(fresh_config / "fleet.yml", {"monitor": {"interval": 60}})
        monkeypatch.setenv("ALERT_EMAIL", "ops@example.com")
        monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example/y")
        monkeypatch.setenv("CHECK_INTERVAL", "15")
        monkeypatch.setenv("FLEET_API_KEY", "k")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = FleetConfig.settings()

        assert settings.alerts.email == "ops@example.com"
        assert settings.alerts.webhook_url == "https://hooks.example/y"
        assert settings.monitor.interval == 15
        assert settings.security.api_key == "k"
        assert settings.logging.level == "DEBUG"

    def test_invalid_check_interval_ignored(self, fresh_config, monkeypatch):
        monkeypatch.setenv("CHECK_INTERVAL", "soon")
        assert FleetConfig.settings().monitor.interval == 30

    def test_config_file_override(self, fresh_config, monkeypatch, tmp_path_factory):
        other = tmp_path_factory.mktemp("elsewhere") / "custom.yml"
        _write_config(other, {"fleet": {"label": "desk"}})
        monkeypatch.setenv("FLEET_CONFIG_FILE", str(other))

        assert config_file() == other
        assert FleetConfig.settings().fleet.label == "desk"

    def test_cache_and_reload(self, fresh_config):
        path = fresh_config / "fleet.yml"
        _write_config(path, {"fleet": {"max_instances": 3}})
        assert FleetConfig.settings().fleet.max_instances == 3

        _write_config(path, {"fleet": {"max_instances": 5}})
        assert FleetConfig.settings().fleet.max_instances == 3

        FleetConfig.reload()
        assert FleetConfig.settings().fleet.max_instances == 5

    def test_project_dir(self, fresh_config):
        assert project_dir() == fresh_config.resolve()


class TestEnv:

    def test_get_env_normalizes_key(self, monkeypatch):
        monkeypatch.setenv("ALERT_EMAIL", "a@b.c")
        assert get_env("alert-email") == "a@b.c"

    def test_get_env_required(self, monkeypatch):
        monkeypatch.delenv("MISSING_THING", raising=False)
        with pytest.raises(ValueError):
            get_env("missing_thing", required=True)

    def test_vnc_password(self, monkeypatch):
        monkeypatch.delenv("VNC_PASSWORD", raising=False)
        assert vnc_password() == "mt5password"
        monkeypatch.setenv("VNC_PASSWORD", "s3cret")
        assert vnc_password() == "s3cret"
