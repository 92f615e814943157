"""
Error taxonomy for fleet operations.

Every error carries the CLI exit code and HTTP status used by the
front-ends, so callers can surface a taxonomy error without mapping it.
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes used by the CLI."""

    OK = 0
    DEGRADED = 1
    VALIDATION = 2
    CONFLICT = 3
    RUNTIME = 4
    NOT_FOUND = 5
    DECLINED = 6


class FleetError(Exception):
    """Base class for all fleet errors."""

    exit_code: ExitCode = ExitCode.RUNTIME
    http_status: int = 500


class InvalidName(FleetError):
    """Raised when an instance name is malformed."""

    exit_code = ExitCode.VALIDATION
    http_status = 400


class NameConflict(FleetError):
    """Raised when an instance with the same name already exists."""

    exit_code = ExitCode.CONFLICT
    http_status = 409

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Instance '{name}' already exists")


class PortConflict(FleetError):
    """Raised when an explicitly requested port is held by another instance."""

    exit_code = ExitCode.CONFLICT
    http_status = 409

    def __init__(self, port: int, owner: str) -> None:
        self.port = port
        self.owner = owner
        super().__init__(f"Port {port} is already used by instance '{owner}'")


class ProtectedInstance(FleetError):
    """Raised when the generic remove path targets the main instance."""

    exit_code = ExitCode.VALIDATION
    http_status = 403

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Cannot remove protected instance '{name}'. Use 'stop' instead.")


class PortExhaustion(FleetError):
    """Raised when no free port exists in the scan window."""

    exit_code = ExitCode.RUNTIME
    http_status = 503

    def __init__(self, base_port: int, limit: int) -> None:
        self.base_port = base_port
        self.limit = limit
        super().__init__(f"Could not find an available port in {base_port}-{limit}")


class InvalidTarget(FleetError):
    """Raised when a scale target is out of range or unreachable."""

    exit_code = ExitCode.VALIDATION
    http_status = 400


class RuntimeFailure(FleetError):
    """Raised when a container runtime call fails."""

    exit_code = ExitCode.RUNTIME
    http_status = 502


class InstanceNotFound(FleetError):
    """Raised when a named instance is not part of the fleet."""

    exit_code = ExitCode.NOT_FOUND
    http_status = 404

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Instance '{name}' not found")


class ArchiveNotFound(FleetError):
    """Raised when a backup archive path does not exist."""

    exit_code = ExitCode.NOT_FOUND
    http_status = 404

    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"Backup file not found: {path}")


class ConfirmationDeclined(FleetError):
    """Raised when an irreversible operation was not confirmed."""

    exit_code = ExitCode.DECLINED
    http_status = 400


class InvalidArchive(FleetError):
    """Raised when a backup archive cannot be read or holds unsafe members."""

    exit_code = ExitCode.VALIDATION
    http_status = 400

    def __init__(self, path: object, reason: object) -> None:
        self.path = path
        super().__init__(f"Invalid backup archive {path}: {reason}")
