"""
Cutroom Collaboration Platform
Notification model.

One record per recipient per event.  Only the recipient mutates it
(read / read-all).
"""

from datetime import datetime, timezone

from cutroom.models import db

# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "task_assigned", "project_invite",
    "delivery_uploaded", "approval_requested",
    "delivery_approved", "delivery_rejected", "revision_requested",
    "comment", "mention", "system",
}


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    type = db.Column(db.String(30), nullable=False, default="system")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    reference_type = db.Column(db.String(30))
    reference_id = db.Column(db.Integer)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        if self.is_read:
            return
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: user={self.user_id} {self.type}>"
