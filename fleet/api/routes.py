"""
Flask API routes for the fleet manager.
"""

from __future__ import annotations

import logging
from itertools import islice

from flask import Blueprint, Response, jsonify, request

from fleet.api.audit import audit_log_response
from fleet.api.auth import require_api_key
from fleet.api import rate_limit
from fleet.api.rate_limit import limiter
from fleet.api.responses import api_error, api_success
from fleet.api.validators import (
    ValidationError,
    validate_count,
    validate_days,
    validate_name,
    validate_port,
    validate_tail,
)
from fleet.container import get_services
from fleet.errors import FleetError
from fleet.observability import ERRORS_TOTAL, collect_fleet_metrics

logger = logging.getLogger("fleet")

# Type alias for Flask route returns
RouteResponse = tuple[Response, int]

api = Blueprint("api", __name__)

api.before_request(require_api_key)
api.after_request(audit_log_response)

DEFAULT_LOG_TAIL = 100


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


# =============================================================================
# Health
# =============================================================================

@api.route("/health")
@limiter.exempt
def health() -> RouteResponse:
    """Liveness of the API process and reachability of the container runtime."""
    services = get_services()
    runtime_ok = True
    instances = 0
    try:
        instances = services.registry.count()
    except Exception as e:
        logger.warning(f"Health check: runtime unreachable: {e}")
        runtime_ok = False

    return jsonify({
        "status": "healthy" if runtime_ok else "degraded",
        "runtime": runtime_ok,
        "instances": instances,
        "monitor": services.monitor.running,
    }), 200 if runtime_ok else 503


# =============================================================================
# Instances
# =============================================================================

@api.route("/api/instances")
def list_instances() -> RouteResponse:
    """List fleet instances with ports and resource usage."""
    rows = get_services().controller.status()
    return api_success({"instances": rows, "total": len(rows)})


@api.route("/api/instances", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def create_instance() -> RouteResponse:
    """Create a named instance, optionally on explicit ports."""
    body = _json_body()
    name = validate_name(body.get("name"))
    port = validate_port(body.get("port"), "port")
    vnc_port = validate_port(body.get("vnc_port"), "vnc_port")

    instance = get_services().controller.create_instance(name, port=port, vnc_port=vnc_port)
    return api_success(instance.to_dict(), message=f"Instance {name} created", status_code=201)


@api.route("/api/instances/<name>", methods=["DELETE"])
@limiter.limit(lambda: rate_limit.admin_limit)
def remove_instance(name: str) -> RouteResponse:
    """Remove an instance and purge its directories (the main instance is protected)."""
    validate_name(name)
    purge = request.args.get("purge", "true").lower() not in ("0", "false", "no")
    get_services().controller.remove_instance(name, purge=purge)
    return api_success(message=f"Instance {name} removed")


@api.route("/api/instances/<name>/logs")
def instance_logs(name: str) -> RouteResponse:
    """Return the last lines of an instance's container log."""
    validate_name(name)
    tail = validate_tail(request.args.get("tail")) or DEFAULT_LOG_TAIL
    lines = list(islice(get_services().controller.logs(name, tail=tail), tail))
    return api_success({"name": name, "lines": lines})


# =============================================================================
# Fleet
# =============================================================================

@api.route("/api/fleet/start", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def start_fleet() -> RouteResponse:
    instance = get_services().controller.start_main()
    return api_success(instance.to_dict(), message="Main instance running")


@api.route("/api/fleet/stop", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def stop_fleet() -> RouteResponse:
    stopped = get_services().controller.stop_all()
    return api_success({"stopped": stopped}, message=f"{len(stopped)} instance(s) stopped")


@api.route("/api/fleet/scale", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def scale_fleet() -> RouteResponse:
    """Converge the fleet to ``{"count": N}`` instances."""
    count = validate_count(_json_body().get("count"))
    result = get_services().controller.scale_to(count)
    return api_success(result.to_dict(), message=f"Fleet scaled to {count}")


@api.route("/api/fleet/health")
def fleet_health() -> RouteResponse:
    """Classify every instance now; alert state is left to the background monitor."""
    report = get_services().monitor.check_fleet()
    return api_success(report.to_dict())


@api.route("/api/fleet/metrics")
def fleet_metrics() -> RouteResponse:
    return api_success(collect_fleet_metrics(get_services().controller))


# =============================================================================
# Alerts
# =============================================================================

@api.route("/api/alerts/test", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def test_alerts() -> RouteResponse:
    """Send a test alert through every configured channel."""
    results = get_services().notifier.send_test()
    if not results:
        return api_success({"channels": {}}, message="No alert channels configured; alert written to monitor log")
    return api_success({"channels": results}, message="Test alert sent")


# =============================================================================
# Backups
# =============================================================================

@api.route("/api/backups")
def list_backups() -> RouteResponse:
    archives = get_services().backups.list()
    return api_success({"backups": [a.to_dict() for a in archives], "total": len(archives)})


@api.route("/api/backups", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def create_backup() -> RouteResponse:
    """Archive one instance (``{"name": ...}``) or the whole fleet."""
    name = _json_body().get("name")
    scope = validate_name(name) if name is not None else None
    archive = get_services().backups.backup(scope)
    return api_success(archive.to_dict(), message=f"Backup created: {archive.name}", status_code=201)


@api.route("/api/backups/restore", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def restore_backup() -> RouteResponse:
    """Stop the fleet and restore an archive; requires ``"confirm": true``."""
    body = _json_body()
    archive_name = body.get("archive")
    if not archive_name or not isinstance(archive_name, str):
        raise ValidationError("archive is required")
    if "/" in archive_name or "\\" in archive_name:
        raise ValidationError("archive must be a file name inside the backups directory")

    confirmed = body.get("confirm") is True
    backups = get_services().backups
    archive = backups.restore(backups.layout.backups_dir / archive_name, confirmed=confirmed)
    return api_success(archive.to_dict(), message="Restore completed. Start the fleet to bring instances back.")


@api.route("/api/backups/cleanup", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def cleanup_backups() -> RouteResponse:
    services = get_services()
    days = validate_days(_json_body().get("days"), services.settings.backup.retention_days)
    deleted = services.backups.cleanup(days)
    return api_success({"deleted": [a.name for a in deleted]}, message=f"{len(deleted)} backup(s) deleted")


# =============================================================================
# Error Handlers
# =============================================================================

@api.errorhandler(ValidationError)
def handle_validation_error(e: ValidationError) -> RouteResponse:
    return api_error(str(e), 400)


@api.errorhandler(FleetError)
def handle_fleet_error(e: FleetError) -> RouteResponse:
    if e.http_status >= 500:
        ERRORS_TOTAL.labels(endpoint=request.endpoint or "unknown").inc()
        logger.error(f"{request.endpoint}: {e}")
    return api_error(str(e), e.http_status)
