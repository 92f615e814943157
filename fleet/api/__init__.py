"""API module for Flask routes and helpers."""

from fleet.api.validators import (
    ValidationError,
    validate_name,
    validate_port,
    validate_count,
    validate_days,
    validate_tail,
)
from fleet.api.responses import api_success, api_error
from fleet.api.auth import require_api_key

__all__ = [
    "ValidationError",
    "validate_name",
    "validate_port",
    "validate_count",
    "validate_days",
    "validate_tail",
    "api_success",
    "api_error",
    "require_api_key",
]
