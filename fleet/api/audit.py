"""
Audit logging for fleet mutations made through the API.

Logs every write operation (POST, DELETE) as structured JSON to stdout via
a dedicated 'audit' logger. GET requests are not audited.
"""

import logging
import re
import sys
from datetime import datetime, timezone

from flask import request, Response
from pythonjsonlogger.json import JsonFormatter

audit_logger = logging.getLogger("audit")
audit_logger.setLevel(logging.INFO)
audit_logger.propagate = False

_handler = logging.StreamHandler(sys.stdout)
_handler.setFormatter(JsonFormatter("%(message)s"))
audit_logger.addHandler(_handler)

AUDIT_METHODS = frozenset({"POST", "PUT", "DELETE"})

# Instance name from paths like /api/instances/<name>/...
_INSTANCE_RE = re.compile(r"/api/instances/([^/]+)")


def audit_log_response(response: Response) -> Response:
    """
    after_request hook that logs fleet mutations.

    Attach to a Blueprint via: blueprint.after_request(audit_log_response)
    """
    if request.method not in AUDIT_METHODS:
        return response

    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": "fleet_api_action",
        "method": request.method,
        "path": request.path,
        "endpoint": request.endpoint,
        "status_code": response.status_code,
        "remote_addr": request.remote_addr,
    }

    match = _INSTANCE_RE.search(request.path)
    if match:
        entry["instance"] = match.group(1)

    audit_logger.info("fleet_api_action", extra=entry)
    return response
