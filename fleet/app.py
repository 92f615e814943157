"""
HTTP API for the desktop instance fleet.

Serves the fleet command surface over Flask and runs the background
services next to it:
- Health monitor polling every instance and sending edge-triggered alerts
- Optional scheduled backups with retention cleanup
- Prometheus metrics on /metrics
- API key authentication, rate limiting and audit logging on /api/*
"""

from __future__ import annotations

import logging
import signal

from flask import Flask

from fleet.container import ServiceContainer

logger = logging.getLogger("fleet")


def create_app(services: ServiceContainer | None = None, start_background: bool = True) -> Flask:
    """
    Build the Flask application.

    Args:
        services: Service container to use (a new one is created if None)
        start_background: Start the health monitor and backup scheduler

    Returns:
        Configured Flask app
    """
    import fleet.container as container_mod
    from fleet.api.rate_limit import init_limiter
    from fleet.api.responses import api_error
    from fleet.api.routes import api
    from fleet.observability import ERRORS_TOTAL, attach_monitor_log, init_metrics

    services = services or ServiceContainer()
    settings = services.settings

    app = Flask(__name__)

    init_limiter(app, settings.security.rate_limiting)
    init_metrics(app)
    app.register_blueprint(api)

    app.extensions["services"] = services
    container_mod._global_container = services

    # =========================================================================
    # Error Handlers
    # =========================================================================

    @app.errorhandler(404)
    def handle_not_found(e: Exception) -> tuple:
        return api_error("Resource not found", 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(e: Exception) -> tuple:
        return api_error("Method not allowed", 405)

    @app.errorhandler(500)
    def handle_server_error(e: Exception) -> tuple:
        ERRORS_TOTAL.labels(endpoint="app_500").inc()
        logger.error(f"Internal server error: {e}")
        return api_error("Internal server error", 500)

    # =========================================================================
    # Background services
    # =========================================================================

    if start_background:
        attach_monitor_log(services.monitor_log_path())
        services.monitor.start()
        services.scheduler.start()

    return app


def install_signal_handlers(services: ServiceContainer) -> None:
    """Stop background services on SIGINT/SIGTERM, then exit."""

    def _handle(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        services.shutdown()
        raise SystemExit(0)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def serve(host: str = "0.0.0.0", port: int = 5000) -> None:
    """Run the API with the Flask development server."""
    from fleet.config.loader import FleetConfig
    from fleet.observability import setup_json_logging

    setup_json_logging(level=FleetConfig.settings().logging.level)
    services = ServiceContainer()
    app = create_app(services)
    install_signal_handlers(services)
    logger.info(f"Fleet API listening on {host}:{port}")
    app.run(host=host, port=port, debug=False)
