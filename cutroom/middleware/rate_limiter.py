"""
Rate limiting: Flask-Limiter limits per route category.

The Limiter instance lives in ``cutroom/__init__.py`` with no default
limits; this module applies them after the blueprints are registered.

    - Auth endpoints (login/register/refresh): 10/minute per IP
    - Write endpoints:                         120/minute
    - Read endpoints:                          600/minute
    - Health check and live stream:            exempt

Rate limiting is disabled in testing (RATELIMIT_ENABLED=False).
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

AUTH_LIMIT = "10/minute"
WRITE_LIMIT = "120/minute"
READ_LIMIT = "600/minute"

_EXEMPT = ("health_bp", "live_bp")


def rate_limit_key():
    """Authenticated user when known, else the remote address."""
    user_id = getattr(g, "current_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return request.remote_addr or "unknown"


def _is_write():
    return request.method in ("POST", "PUT", "PATCH", "DELETE")


def _is_read():
    return not _is_write()


def init_rate_limits(app, limiter):
    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for name in _EXEMPT:
        bp = app.blueprints.get(name)
        if bp:
            limiter.exempt(bp)

    auth_bp = app.blueprints.get("auth_bp")
    if auth_bp:
        limiter.limit(AUTH_LIMIT, key_func=lambda: request.remote_addr or "unknown",
                      exempt_when=lambda: request.endpoint in ("auth_bp.me", "auth_bp.update_me"))(auth_bp)

    for name, bp in app.blueprints.items():
        if name in _EXEMPT or name == "auth_bp":
            continue
        limiter.limit(WRITE_LIMIT, key_func=rate_limit_key, exempt_when=_is_read)(bp)
        limiter.limit(READ_LIMIT, key_func=rate_limit_key, exempt_when=_is_write)(bp)

    logger.info("Rate limits applied to %d blueprints", len(app.blueprints))
