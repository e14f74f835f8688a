"""
JWT Service: token generation, verification and refresh sessions.

Access token:  15 minutes (JWT_ACCESS_EXPIRES)
Refresh token: 7 days     (JWT_REFRESH_EXPIRES)
Algorithm:     HS256

Access payload:
{
    "sub": "<user_id>",
    "role": "<global role>",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Only the SHA-256 hash of a refresh token is stored, in a Session row.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from cutroom.models import db
from cutroom.models.auth import Session
from cutroom.utils.helpers import commit_or_raise

DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
DEFAULT_REFRESH_EXPIRES = 604800   # 7 days
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def _get_refresh_expires():
    return current_app.config.get("JWT_REFRESH_EXPIRES", DEFAULT_REFRESH_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: int, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def generate_refresh_token(user_id: int) -> tuple[str, str, datetime]:
    """
    Generate a long-lived refresh token.
    Returns: (raw_token, token_hash, expires_at)
    """
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=_get_refresh_expires())
    payload = {
        "sub": str(user_id),
        "type": "refresh",
        "iat": now,
        "exp": expires_at,
        "jti": str(uuid.uuid4()),
    }
    raw_token = jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)
    return raw_token, hash_token(raw_token), expires_at


def generate_token_pair(user_id: int, role: str) -> dict:
    access_token = generate_access_token(user_id, role)
    refresh_token, token_hash, expires_at = generate_refresh_token(user_id)
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_hash": token_hash,
        "expires_at": expires_at,
        "token_type": "Bearer",
        "expires_in": _get_access_expires(),
    }


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT.

    Returns the payload with ``sub`` as an int.  Raises jwt exceptions
    (ExpiredSignatureError, InvalidTokenError, ...) on failure.
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    try:
        payload["sub"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise jwt.InvalidTokenError("Token subject missing") from None
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type="access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, expected_type="refresh")


def hash_token(token: str) -> str:
    """SHA-256 hash of a token (never store raw refresh tokens)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════
# Session Management
# All session persistence belongs in this service, not in blueprints.
# ═══════════════════════════════════════════════════════════════

def create_session(user_id, token_hash, ip_address, user_agent, expires_at) -> Session:
    session = Session(
        user_id=user_id,
        token_hash=token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=expires_at,
    )
    db.session.add(session)
    commit_or_raise()
    return session


def get_active_session(user_id: int, token_hash: str) -> Session | None:
    return Session.query.filter_by(user_id=user_id, token_hash=token_hash, is_active=True).first()


def revoke_session(session: Session) -> None:
    session.is_active = False
    commit_or_raise()


def revoke_session_by_token(token_hash: str) -> bool:
    """Revoke the active session holding *token_hash*.  False if none matched."""
    session = Session.query.filter_by(token_hash=token_hash, is_active=True).first()
    if session is None:
        return False
    revoke_session(session)
    return True


def revoke_all_user_sessions(user_id: int) -> int:
    count = Session.query.filter_by(user_id=user_id, is_active=True).update({"is_active": False})
    commit_or_raise()
    return count


def rotate_session(old_session, user_id, new_token_hash, new_expires_at, ip_address, user_agent) -> Session:
    """
    Invalidate the old session and create its replacement in one commit,
    so a refresh token can never be used twice.
    """
    old_session.is_active = False
    old_session.last_used_at = datetime.now(timezone.utc)
    new_session = Session(
        user_id=user_id,
        token_hash=new_token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=new_expires_at,
    )
    db.session.add(new_session)
    commit_or_raise()
    return new_session
