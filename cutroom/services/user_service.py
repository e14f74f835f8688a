"""
User Service: registration, login, profile and global-role management.

Accounts are never deleted; ``set_active(False)`` deactivates them and
revokes their refresh sessions.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy import func, or_

from cutroom.core.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from cutroom.models import db
from cutroom.models.audit import record_audit
from cutroom.models.auth import DEFAULT_GLOBAL_ROLE, GLOBAL_ROLES, Session, User
from cutroom.services.permission_service import Action, require
from cutroom.utils.crypto import hash_password, verify_password
from cutroom.utils.helpers import get_or_raise, parse_choice, unit_of_work

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6


def _normalize_email(email):
    try:
        return validate_email((email or "").strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"}) from None


def _check_password(password, field="password"):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", details={field: "too short"},
        )


def _hash(password):
    return hash_password(password, rounds=current_app.config.get("BCRYPT_ROUNDS", 12))


def get_user_by_email(email) -> User | None:
    return User.query.filter(func.lower(User.email) == (email or "").strip().lower()).first()


# ═══════════════════════════════════════════════════════════════
# Registration & login
# ═══════════════════════════════════════════════════════════════
def register_user(name, email, password, phone=None) -> User:
    name = (name or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        raise ValidationError(
            f"Name must be at least {MIN_NAME_LENGTH} characters.", details={"name": "too short"},
        )
    email = _normalize_email(email)
    _check_password(password)
    if get_user_by_email(email) is not None:
        raise ConflictError(f"User with email {email} already exists", details={"email": "taken"})

    with unit_of_work():
        user = User(
            name=name,
            email=email,
            password_hash=_hash(password),
            global_role=DEFAULT_GLOBAL_ROLE,
            phone=phone,
        )
        db.session.add(user)
        db.session.flush()
        record_audit(actor_id=user.id, action="user.register", entity_type="user", entity_id=user.id)

    logger.info("User %s registered", user.id, extra={"user_id": user.id})
    return user


def authenticate_user(email, password) -> User:
    """Return the user for valid credentials.

    Unknown email, wrong password and deactivated accounts all raise the
    same AuthenticationError so the response does not leak which it was.
    """
    user = get_user_by_email(email)
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", (email or "")[:255], extra={"event_type": "login_failed"})
        raise AuthenticationError("Invalid email or password")
    return user


def update_last_login(user: User) -> None:
    with unit_of_work():
        user.last_login_at = datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════════
def get_user(user_id) -> User:
    return get_or_raise(User, user_id, "User")


def update_profile(user_id, data: dict) -> User:
    with unit_of_work():
        user = get_or_raise(User, user_id, "User")
        if "name" in data:
            name = (data.get("name") or "").strip()
            if len(name) < MIN_NAME_LENGTH:
                raise ValidationError(
                    f"Name must be at least {MIN_NAME_LENGTH} characters.", details={"name": "too short"},
                )
            user.name = name
        if "email" in data:
            email = _normalize_email(data.get("email"))
            other = get_user_by_email(email)
            if other is not None and other.id != user.id:
                raise ConflictError(f"User with email {email} already exists", details={"email": "taken"})
            user.email = email
        for key in ("phone", "avatar_url"):
            if key in data:
                setattr(user, key, data.get(key) or None)
    return user


def change_password(user_id, current_password, new_password) -> None:
    user = get_or_raise(User, user_id, "User")
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect.", details={"current_password": "invalid"})
    _check_password(new_password, "new_password")
    with unit_of_work():
        user.password_hash = _hash(new_password)
        record_audit(actor_id=user_id, action="user.password_change", entity_type="user", entity_id=user_id)


# ═══════════════════════════════════════════════════════════════
# Administration
# ═══════════════════════════════════════════════════════════════
def list_users(role=None, search=None, include_inactive=True):
    q = User.query
    if role:
        q = q.filter_by(global_role=parse_choice(role, GLOBAL_ROLES, "role"))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.name, User.id)


def change_global_role(admin_id, user_id, role) -> User:
    require(admin_id, Action.ADMIN, message="Admin access required")
    role = parse_choice(role, GLOBAL_ROLES, "role")
    if admin_id == user_id:
        raise ValidationError("You cannot change your own role.", details={"user_id": "self"})
    with unit_of_work():
        user = get_or_raise(User, user_id, "User")
        previous = user.global_role
        user.global_role = role
        record_audit(
            actor_id=admin_id, action="user.role_change", entity_type="user", entity_id=user_id,
            details={"old": previous, "new": role},
        )
    logger.info("User %s role %s -> %s", user_id, previous, role,
                extra={"user_id": admin_id, "event_type": "role_change"})
    return user


def set_active(admin_id, user_id, is_active: bool) -> User:
    require(admin_id, Action.ADMIN, message="Admin access required")
    if admin_id == user_id and not is_active:
        raise ValidationError("You cannot deactivate yourself.", details={"user_id": "self"})
    with unit_of_work():
        user = get_or_raise(User, user_id, "User")
        user.is_active = bool(is_active)
        if not user.is_active:
            Session.query.filter_by(user_id=user_id, is_active=True).update({"is_active": False})
        record_audit(
            actor_id=admin_id, action="user.activate" if is_active else "user.deactivate",
            entity_type="user", entity_id=user_id,
        )
    return user


def count_by_role() -> dict:
    rows = db.session.execute(
        db.select(User.global_role, func.count(User.id))
        .where(User.is_active.is_(True)).group_by(User.global_role)
    ).all()
    counts = dict(rows)
    return {role: counts.get(role, 0) for role in GLOBAL_ROLES}


def require_user(user_id) -> User:
    """Active user or NotFoundError (used by token-authenticated routes)."""
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User", user_id)
    return user
