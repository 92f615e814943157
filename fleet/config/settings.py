"""
Constants and settings for the fleet manager.
"""

import os
import re

# =============================================================================
# Constants
# =============================================================================

APP_LABEL_KEY = "app"
INSTANCE_LABEL_KEY = "instance"

MAIN_INSTANCE = "main"
AUTO_PREFIX = "auto-"
MAX_INSTANCES = 10

BASE_PORT = 6080
BASE_VNC_PORT = 5901
PORT_SCAN_RANGE = 100

# Ports the guest listens on inside every instance
DISPLAY_CONTAINER_PORT = 6080
VNC_CONTAINER_PORT = 5901

DEFAULT_VNC_PASSWORD = "mt5password"

# Instance names become container names, so follow Docker's naming rules
INSTANCE_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$')
MAX_INSTANCE_NAME_LENGTH = 63

ARCHIVE_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def get_env(key: str, default: str = None, required: bool = False) -> str:
    """
    Retrieve a configuration value from the environment.

    Args:
        key: Configuration key (upper-cased, dashes become underscores)
        default: Default value
        required: Whether the value is required

    Returns:
        Configuration value

    Raises:
        ValueError: If required value is missing
    """
    env_key = key.upper().replace("-", "_")
    value = os.environ.get(env_key, default)
    if required and not value:
        raise ValueError(f"Required configuration missing: {key}")
    return value
