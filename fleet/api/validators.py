"""
Input validation for API payloads and query parameters.
"""

from typing import Any

from fleet.domain.controller import validate_instance_name
from fleet.errors import InvalidName

MIN_PORT = 1024
MAX_PORT = 65535
MAX_LOG_TAIL = 10000


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


def validate_name(name: Any) -> str:
    """Validate an instance name from a request, reporting as ValidationError."""
    if not isinstance(name, str):
        raise ValidationError("Instance name is required")
    try:
        return validate_instance_name(name)
    except InvalidName as e:
        raise ValidationError(str(e)) from e


def _as_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def validate_port(value: Any, field: str = "port") -> int | None:
    """
    Validate an optional host port.

    Returns:
        The port as int, or None when not provided

    Raises:
        ValidationError: If the port is not an integer in 1024-65535
    """
    if value is None or value == "":
        return None
    port = _as_int(value, field)
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(f"{field} must be between {MIN_PORT} and {MAX_PORT}")
    return port


def validate_count(value: Any) -> int:
    """Validate a scale target; range checks against max_instances happen in the controller."""
    if value is None:
        raise ValidationError("count is required")
    return _as_int(value, "count")


def validate_days(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    days = _as_int(value, "days")
    if days < 0:
        raise ValidationError("days must be zero or positive")
    return days


def validate_tail(value: Any) -> int | None:
    if value is None or value == "":
        return None
    tail = _as_int(value, "tail")
    if not 0 < tail <= MAX_LOG_TAIL:
        raise ValidationError(f"tail must be between 1 and {MAX_LOG_TAIL}")
    return tail
