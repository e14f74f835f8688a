"""
Auth Blueprint: JWT authentication endpoints.

  POST /api/v1/auth/register     - Create account → JWT pair
  POST /api/v1/auth/login        - Email + password → JWT pair
  POST /api/v1/auth/refresh      - Refresh token → rotated JWT pair
  POST /api/v1/auth/logout       - Revoke refresh token(s)
  GET  /api/v1/auth/me           - Current user profile
  PUT  /api/v1/auth/me           - Update profile
  PUT  /api/v1/auth/me/password  - Change password
"""

import jwt as pyjwt
from flask import Blueprint, g, jsonify, request

from cutroom.blueprints import json_body
from cutroom.middleware.jwt_auth import login_required
from cutroom.services import user_service
from cutroom.services.jwt_service import (
    create_session,
    decode_refresh_token,
    generate_token_pair,
    get_active_session,
    hash_token,
    revoke_all_user_sessions,
    revoke_session,
    revoke_session_by_token,
    rotate_session,
)
from cutroom.utils.errors import E, api_error

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


def _issue_tokens(user, status=200):
    tokens = generate_token_pair(user.id, user.global_role)
    create_session(
        user.id, tokens["token_hash"],
        request.remote_addr, request.headers.get("User-Agent", ""),
        tokens["expires_at"],
    )
    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
        "user": user.to_dict(),
    }), status


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """Body: { "name": "...", "email": "...", "password": "...", "phone": "..." }"""
    data = json_body()
    user = user_service.register_user(
        data.get("name"), data.get("email"), data.get("password"), phone=data.get("phone"),
    )
    return _issue_tokens(user, status=201)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """Body: { "email": "...", "password": "..." }"""
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = user_service.authenticate_user(email, password)
    user_service.update_last_login(user)
    return _issue_tokens(user)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new pair.  The old session is revoked
    in the same commit (rotation), so each refresh token works once.
    """
    data = json_body()
    raw = data.get("refresh_token") or ""
    if not raw:
        return api_error(E.VALIDATION_REQUIRED, "refresh_token is required")

    try:
        payload = decode_refresh_token(raw)
    except pyjwt.ExpiredSignatureError:
        return api_error(E.UNAUTHORIZED, "Refresh token expired")
    except pyjwt.InvalidTokenError:
        return api_error(E.UNAUTHORIZED, "Invalid refresh token")

    user_id = payload["sub"]
    session = get_active_session(user_id, hash_token(raw))
    if session is None:
        return api_error(E.UNAUTHORIZED, "Session not found or revoked")
    if session.is_expired:
        revoke_session(session)
        return api_error(E.UNAUTHORIZED, "Session expired")

    user = user_service.get_user(user_id)
    if not user.is_active:
        revoke_session(session)
        return api_error(E.UNAUTHORIZED, "Account is inactive")

    tokens = generate_token_pair(user.id, user.global_role)
    rotate_session(
        session, user.id, tokens["token_hash"], tokens["expires_at"],
        request.remote_addr, request.headers.get("User-Agent", ""),
    )
    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Body: { "refresh_token": "..." } or { "all": true } for every session."""
    data = json_body()
    if data.get("all"):
        count = revoke_all_user_sessions(g.current_user_id)
        return jsonify({"message": "Logged out", "revoked": count}), 200
    raw = data.get("refresh_token") or ""
    revoked = revoke_session_by_token(hash_token(raw)) if raw else False
    return jsonify({"message": "Logged out", "revoked": int(revoked)}), 200


# ═══════════════════════════════════════════════════════════════
# /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(g.current_user.to_dict()), 200


@auth_bp.route("/me", methods=["PUT"])
@login_required
def update_me():
    user = user_service.update_profile(g.current_user_id, json_body())
    return jsonify(user.to_dict()), 200


@auth_bp.route("/me/password", methods=["PUT"])
@login_required
def change_password():
    """Body: { "current_password": "...", "new_password": "..." }"""
    data = json_body()
    user_service.change_password(g.current_user_id, data.get("current_password"), data.get("new_password"))
    return jsonify({"message": "Password updated"}), 200
