"""
Configuration loader for fleet.yml.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

import yaml
from pydantic import ValidationError

from fleet.config.models import FleetSettings
from fleet.config.settings import DEFAULT_VNC_PASSWORD, get_env

logger = logging.getLogger("fleet")


def project_dir() -> Path:
    """Root of the on-disk layout (data/, logs/, configs/, backups/)."""
    return Path(get_env("fleet_project_dir", ".") or ".").resolve()


def config_file() -> Path:
    """Path of fleet.yml, overridable with FLEET_CONFIG_FILE."""
    override = get_env("fleet_config_file")
    if override:
        return Path(override)
    return project_dir() / "fleet.yml"


def vnc_password() -> str:
    """VNC password handed to every instance."""
    return get_env("vnc_password", DEFAULT_VNC_PASSWORD) or DEFAULT_VNC_PASSWORD


class FleetConfig:
    """Manages fleet configuration from YAML file."""

    _lock = threading.Lock()
    _config: dict = {}
    _typed_config: FleetSettings | None = None
    _last_load: float = 0
    _cache_duration: int = 60

    @classmethod
    def load(cls) -> dict:
        """Load fleet configuration from YAML file."""
        now = time.time()
        if cls._config and (now - cls._last_load) < cls._cache_duration:
            return cls._config

        with cls._lock:
            # Double-check after acquiring the lock
            now = time.time()
            if cls._config and (now - cls._last_load) < cls._cache_duration:
                return cls._config
            return cls._load_locked(now)

    @classmethod
    def _load_locked(cls, now: float) -> dict:
        """Load config while holding ``_lock``. Called from :meth:`load`."""
        path = config_file()

        if not path.exists():
            logger.info(f"Fleet config not found, using defaults: {path}")
            config, typed = cls._validated(FleetSettings().model_dump())
        else:
            try:
                with open(path, "r") as f:
                    file_config = yaml.safe_load(f) or {}
                if not isinstance(file_config, dict):
                    raise ValueError("top level must be a mapping")
                config, typed = cls._validated(
                    cls._deep_merge(FleetSettings().model_dump(), file_config)
                )
                logger.info(f"Loaded fleet config from {path}")
            except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
                logger.error(f"Error loading fleet config, using defaults: {e}")
                config, typed = cls._validated(FleetSettings().model_dump())

        cls._config = config
        cls._typed_config = typed
        cls._last_load = now
        return cls._config

    @classmethod
    def _validated(cls, merged: dict) -> tuple[dict, FleetSettings]:
        config = cls._apply_env_overrides(merged)
        return config, FleetSettings.model_validate(config)

    @classmethod
    def _apply_env_overrides(cls, config: dict) -> dict:
        """Environment variables win over fleet.yml for the operator knobs."""
        alerts = config.setdefault("alerts", {})
        email = get_env("alert_email")
        if email:
            alerts["email"] = email
        webhook = get_env("webhook_url")
        if webhook:
            alerts["webhook_url"] = webhook

        interval = get_env("check_interval")
        if interval:
            try:
                config.setdefault("monitor", {})["interval"] = int(interval)
            except ValueError:
                logger.warning(f"Ignoring invalid CHECK_INTERVAL: {interval}")

        api_key = get_env("fleet_api_key")
        if api_key:
            config.setdefault("security", {})["api_key"] = api_key

        level = get_env("log_level")
        if level:
            config.setdefault("logging", {})["level"] = level.upper()
        return config

    @classmethod
    def _deep_merge(cls, base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def get(cls, *keys: str, default: object = None) -> object:
        """Get a nested config value using multiple keys."""
        config = cls.load()
        for key in keys:
            if isinstance(config, dict) and key in config:
                config = config[key]
            else:
                return default
        return config

    @classmethod
    def settings(cls) -> FleetSettings:
        """Get typed configuration as a FleetSettings instance."""
        if cls._typed_config is None or not cls._config:
            cls.load()
        assert cls._typed_config is not None
        return cls._typed_config

    @classmethod
    def reload(cls) -> None:
        """Force reload configuration."""
        with cls._lock:
            cls._config = {}
            cls._last_load = 0
        cls.load()
