"""
Cutroom Collaboration Platform
Identity domain models.

Models:
    - User: an actor with a single platform-wide global role
    - Session: refresh-token session (only the SHA-256 hash is stored)
"""

import uuid
from datetime import datetime, timezone

from cutroom.models import db

# ── Constants ────────────────────────────────────────────────────────────────

# Ordered lowest → highest capability.
GLOBAL_ROLES = ("client", "freelancer", "editor", "manager", "admin")
GLOBAL_ROLE_RANK = {role: rank for rank, role in enumerate(GLOBAL_ROLES, start=1)}
DEFAULT_GLOBAL_ROLE = "editor"


def global_role_at_least(role, minimum):
    """True when *role* sits at or above *minimum* in the global hierarchy."""
    return GLOBAL_ROLE_RANK.get(role, 0) >= GLOBAL_ROLE_RANK[minimum]


class User(db.Model):
    """
    Platform account.

    Never hard-deleted: deactivation flips ``is_active`` so authorship
    and audit references stay resolvable.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    global_role = db.Column(db.String(20), nullable=False, default=DEFAULT_GLOBAL_ROLE)
    phone = db.Column(db.String(50))
    avatar_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    sessions = db.relationship("Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan")
    memberships = db.relationship(
        "ProjectMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="ProjectMember.user_id",
    )

    def has_global_role(self, minimum):
        return global_role_at_least(self.global_role, minimum)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.global_role,
            "phone": self.phone,
            "avatar_url": self.avatar_url,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_summary(self):
        return {"id": self.id, "name": self.name, "email": self.email, "avatar_url": self.avatar_url}

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.global_role})>"


class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    token_hash = db.Column(db.String(64), nullable=False, index=True)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime)

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) > expires

    def to_dict(self):
        return {
            "id": self.id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
