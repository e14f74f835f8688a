"""
Cutroom Collaboration Platform
Audit domain model.

Models:
    - AuditLog: append-only audit trail for state-changing operations.

``record_audit`` is the audit sink: it writes inside a SAVEPOINT so a
failing insert rolls back only itself, and it never raises.
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from cutroom.models import db

logger = logging.getLogger(__name__)


class AuditLog(db.Model):
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    action = db.Column(db.String(60), nullable=False, comment="task.move | delivery.approve | …")
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=True)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    details_json = db.Column(db.Text, default="{}")
    ip_address = db.Column(db.String(45))
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    actor = db.relationship("User", foreign_keys=[user_id])

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.actor.name if self.actor else None,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "project_id": self.project_id,
            "details": self.details,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Audit sink ───────────────────────────────────────────────────────────────

def _request_ip():
    from flask import has_request_context, request
    if has_request_context():
        return request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip() or None
    return None


def record_audit(
    *,
    actor_id: int | None,
    action: str,
    entity_type: str,
    entity_id=None,
    details: dict | None = None,
    project_id: int | None = None,
) -> AuditLog | None:
    """
    Append one audit row inside the caller's transaction.

    The row rides on a SAVEPOINT: if the insert fails, only the savepoint
    rolls back and the caller's unit of work continues.  Returns the
    flushed AuditLog, or None when the write was dropped.
    """
    log = AuditLog(
        user_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        project_id=project_id,
        details_json=json.dumps(details or {}, default=str),
        ip_address=_request_ip(),
    )
    try:
        with db.session.begin_nested():
            db.session.add(log)
    except SQLAlchemyError:
        logger.warning(
            "Audit write dropped: %s %s/%s", action, entity_type, entity_id,
            exc_info=True, extra={"event_type": "audit_failure", "project_id": project_id},
        )
        return None
    return log
