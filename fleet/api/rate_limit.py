"""
Rate limiting for the fleet API.

Uses Flask-Limiter with in-memory storage (single process).
"""

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from fleet.api.responses import api_error
from fleet.config.models import RateLimitingConfig

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)

# Mutation limit, read from config at init time and used by route decorators
admin_limit = "10/minute"


def init_limiter(app: Flask, config: RateLimitingConfig) -> None:
    """Attach the limiter to the Flask app and apply the configured limits."""
    global admin_limit

    if not config.enabled:
        app.config["RATELIMIT_ENABLED"] = False

    admin_limit = config.admin_limit
    app.config["RATELIMIT_DEFAULT"] = config.default_limit

    limiter.init_app(app)

    @app.errorhandler(429)
    def rate_limit_handler(e):
        return api_error("Rate limit exceeded. Try again later.", 429)
