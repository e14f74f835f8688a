"""
JWT Auth Middleware: parses the access token into ``g``.

    Authorization: Bearer <token>  →  g.current_user_id, g.current_user_role

The live stream endpoint also accepts ``?token=`` because EventSource
cannot send headers.  The hook never rejects a request by itself;
``login_required`` and ``role_required`` do that per route.
"""

import functools
import logging

import jwt as pyjwt
from flask import g, request

from cutroom.models import db
from cutroom.models.auth import User, global_role_at_least
from cutroom.services.jwt_service import decode_access_token
from cutroom.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/auth/refresh",
    "/api/v1/health",
    "/api/v1/files/",
)
QUERY_TOKEN_PATHS = ("/api/v1/live/stream",)


def _bearer_token():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    if request.path in QUERY_TOKEN_PATHS:
        return request.args.get("token")
    return None


def init_jwt_middleware(app):
    """Register JWT parsing as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user_id = None
        g.current_user_role = None
        g.token_error = None

        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(JWT_SKIP_PREFIXES):
            return

        token = _bearer_token()
        if not token:
            return
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.token_error = "Token expired"
            return
        except pyjwt.InvalidTokenError:
            g.token_error = "Invalid token"
            return
        g.current_user_id = payload["sub"]
        g.current_user_role = payload.get("role")


def login_required(f):
    """401 unless the request carries a valid token for an active user."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user_id = getattr(g, "current_user_id", None)
        if user_id is None:
            return api_error(E.UNAUTHORIZED, getattr(g, "token_error", None) or "Authentication required")
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return api_error(E.UNAUTHORIZED, "Account not found or inactive")
        # The stored role wins over the token claim (role changes apply at once)
        g.current_user = user
        g.current_user_role = user.global_role
        return f(*args, **kwargs)

    return decorated


def role_required(min_role):
    """Global-role gate for admin-only and manager-only routes."""

    def decorator(f):
        @functools.wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            if not global_role_at_least(g.current_user_role, min_role):
                logger.info(
                    "User %s denied: requires global role %s on %s",
                    g.current_user_id, min_role, f.__name__,
                    extra={"user_id": g.current_user_id, "event_type": "authz_denied"},
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)

        return decorated

    return decorator
