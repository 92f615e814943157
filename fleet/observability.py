"""
Observability module: Prometheus metrics and structured JSON logging.

- Fleet metrics (Gauges, Counters, Histogram)
- PrometheusMetrics integration for automatic Flask instrumentation
- JSON structured logging via python-json-logger
- Monitor log file for health events and alerts
- Detailed fleet metrics collection (the ``metrics`` command)
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter, Gauge, Histogram

if TYPE_CHECKING:
    from flask import Flask
    from prometheus_flask_exporter import PrometheusMetrics

    from fleet.domain.controller import FleetController

logger = logging.getLogger("fleet")

# =============================================================================
# Prometheus Metrics
# =============================================================================

FLEET_INSTANCES = Gauge(
    "fleet_instances",
    "Number of containers carrying the fleet label",
)

UNHEALTHY_INSTANCES = Gauge(
    "fleet_unhealthy_instances",
    "Number of instances classified unhealthy in the last poll",
)

INSTANCE_CPU = Gauge(
    "fleet_instance_cpu_percent",
    "CPU usage of an instance in percent",
    ["instance"],
)

INSTANCE_MEMORY = Gauge(
    "fleet_instance_memory_percent",
    "Memory usage of an instance in percent of its limit",
    ["instance"],
)

HEALTH_CHECK_DURATION = Histogram(
    "fleet_health_check_duration_seconds",
    "Duration of one full health poll cycle",
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60),
)

ALERTS_TOTAL = Counter(
    "fleet_alerts_total",
    "Alerts raised by kind",
    ["kind"],
)

ALERT_DELIVERY_FAILURES = Counter(
    "fleet_alert_delivery_failures_total",
    "Failed alert deliveries by channel",
    ["channel"],
)

BACKUPS_TOTAL = Counter(
    "fleet_backups_total",
    "Backup archives created by kind",
    ["kind"],
)

ERRORS_TOTAL = Counter(
    "fleet_errors_total",
    "Total number of errors by endpoint",
    ["endpoint"],
)


# =============================================================================
# Metrics Initialization
# =============================================================================

def init_metrics(app: Flask) -> PrometheusMetrics:
    """
    Initialize PrometheusMetrics on the Flask app.

    Auto-instruments all routes and exposes /metrics.
    """
    from prometheus_flask_exporter import PrometheusMetrics

    metrics = PrometheusMetrics(app, path="/metrics")

    # Exempt /metrics from rate limiting
    from fleet.api.rate_limit import limiter
    metrics_view = app.view_functions.get("prometheus_metrics")
    if metrics_view is not None:
        limiter.exempt(metrics_view)

    return metrics


# =============================================================================
# Logging
# =============================================================================

class SensitiveDataFilter(logging.Filter):
    """Filter to mask sensitive data in log messages."""

    SENSITIVE_PATTERNS = [
        (re.compile(r'password["\']?\s*[:=]\s*["\']?[^"\'}\s]+', re.I), 'password=***'),
        (re.compile(r'token["\']?\s*[:=]\s*["\']?[^"\'}\s]+', re.I), 'token=***'),
        (re.compile(r'secret["\']?\s*[:=]\s*["\']?[^"\'}\s]+', re.I), 'secret=***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


def setup_json_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with JSON structured output.

    Uses python-json-logger's JsonFormatter on stderr. The 'audit' logger
    is unaffected (propagate=False, own handler).
    """
    from pythonjsonlogger.json import JsonFormatter

    handler = logging.StreamHandler(sys.stderr)
    formatter = JsonFormatter(
        fmt="%(timestamp)s %(name)s %(levelname)s %(message)s",
        rename_fields={"levelname": "level", "asctime": "timestamp"},
        timestamp=True,
    )
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())


_monitor_handler: logging.Handler | None = None


def attach_monitor_log(path: Path) -> logging.Handler:
    """
    Append health events and alerts of the 'fleet.monitor' logger to a file.

    Lines look like ``[2024-10-27 12:00:00] [WARNING] message`` so the file
    stays readable with tail/grep. Calling it again replaces the handler.
    """
    global _monitor_handler

    monitor_logger = logging.getLogger("fleet.monitor")
    monitor_logger.setLevel(logging.INFO)
    if _monitor_handler is not None:
        monitor_logger.removeHandler(_monitor_handler)
        _monitor_handler.close()

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    handler.addFilter(SensitiveDataFilter())
    monitor_logger.addHandler(handler)
    _monitor_handler = handler
    return handler


# =============================================================================
# Fleet Metrics Collection
# =============================================================================

def _tree_size(path: Path) -> int:
    total = 0
    for item in path.rglob("*"):
        try:
            if item.is_file() and not item.is_symlink():
                total += item.stat().st_size
        except OSError:
            continue
    return total


def collect_fleet_metrics(controller: FleetController, top_logs: int = 10) -> dict[str, Any]:
    """
    Gather detailed fleet metrics and update the Prometheus gauges.

    Returns a dict with per-instance resource usage and port mappings,
    data directory sizes (largest first) and the largest log files.
    """
    instances = controller.status()
    FLEET_INSTANCES.set(len(instances))
    for row in instances:
        resources = row.get("resources")
        if resources:
            INSTANCE_CPU.labels(instance=row["name"]).set(resources["cpu_percent"])
            INSTANCE_MEMORY.labels(instance=row["name"]).set(resources["memory_percent"])

    layout = controller.layout
    data_usage = []
    if layout.data_root.is_dir():
        for entry in sorted(layout.data_root.iterdir()):
            if entry.is_dir():
                data_usage.append({"name": entry.name, "bytes": _tree_size(entry)})
    data_usage.sort(key=lambda d: d["bytes"], reverse=True)

    log_files = []
    if layout.logs_root.is_dir():
        for log_file in layout.logs_root.rglob("*.log"):
            try:
                size = log_file.stat().st_size
            except OSError:
                continue
            log_files.append({"path": str(log_file.relative_to(layout.root)), "bytes": size})
    log_files.sort(key=lambda f: f["bytes"], reverse=True)

    return {
        "instances": [
            {
                "name": row["name"],
                "runtime_status": row["runtime_status"],
                "display_port": row["display_port"],
                "vnc_port": row["vnc_port"],
                "resources": row["resources"],
            }
            for row in instances
        ],
        "data_usage": data_usage,
        "log_files": log_files[:top_logs],
    }
