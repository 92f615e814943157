"""Configuration module for the fleet manager."""

from fleet.config.settings import (
    APP_LABEL_KEY,
    INSTANCE_LABEL_KEY,
    MAIN_INSTANCE,
    AUTO_PREFIX,
    MAX_INSTANCES,
    BASE_PORT,
    BASE_VNC_PORT,
    PORT_SCAN_RANGE,
    DISPLAY_CONTAINER_PORT,
    VNC_CONTAINER_PORT,
    INSTANCE_NAME_PATTERN,
    MAX_INSTANCE_NAME_LENGTH,
    get_env,
)
from fleet.config.loader import FleetConfig, config_file, project_dir, vnc_password
from fleet.config.models import FleetSettings

__all__ = [
    "APP_LABEL_KEY",
    "INSTANCE_LABEL_KEY",
    "MAIN_INSTANCE",
    "AUTO_PREFIX",
    "MAX_INSTANCES",
    "BASE_PORT",
    "BASE_VNC_PORT",
    "PORT_SCAN_RANGE",
    "DISPLAY_CONTAINER_PORT",
    "VNC_CONTAINER_PORT",
    "INSTANCE_NAME_PATTERN",
    "MAX_INSTANCE_NAME_LENGTH",
    "get_env",
    "FleetConfig",
    "FleetSettings",
    "config_file",
    "project_dir",
    "vnc_password",
]
