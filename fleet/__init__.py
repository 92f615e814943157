"""
Fleet manager for containerized remote-desktop instances.

This service operates a fleet of identical desktop containers, each exposing
a browser display endpoint and a raw VNC endpoint:
- Non-conflicting host port allocation across instances
- Idempotent instance creation/removal and scaling to a target count
- Continuous health classification with edge-triggered alerts (email, webhook)
- Backup, restore and retention cleanup of instance data
- Prometheus metrics and structured JSON logging
- HTTP API and command line front-ends
"""

__version__ = "1.0.0"
