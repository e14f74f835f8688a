"""
Cutroom Collaboration Platform
Delivery review models.

Models:
    - DeliveryJob: a versioned deliverable; ``status`` is the mutable
      projection maintained by cutroom.services.delivery_review
    - Approval: append-only review decision (never updated or deleted)
"""

from datetime import datetime, timezone

from cutroom.models import db

# ── Constants ────────────────────────────────────────────────────────────────

DELIVERY_STATUSES = (
    "pending", "uploaded", "in_review", "approved", "rejected", "revision_requested",
)
APPROVAL_VERDICTS = ("approved", "rejected", "revision")


class DeliveryJob(db.Model):
    __tablename__ = "delivery_jobs"
    __table_args__ = (
        db.UniqueConstraint("project_id", "version", name="uq_delivery_project_version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    format = db.Column(db.String(50))
    file_url = db.Column(db.String(1000))
    file_name = db.Column(db.String(500))
    file_size = db.Column(db.BigInteger)
    content_type = db.Column(db.String(100))
    version = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(30), nullable=False, default="pending", index=True)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    review_notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project", back_populates="deliveries")
    uploader = db.relationship("User", foreign_keys=[uploaded_by])
    reviewer = db.relationship("User", foreign_keys=[reviewed_by])
    approvals = db.relationship(
        "Approval", back_populates="delivery", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="Approval.id",
    )

    @property
    def has_file(self):
        return bool(self.file_url)

    def to_dict(self, include_approvals=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "format": self.format,
            "has_file": self.has_file,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "content_type": self.content_type,
            "version": self.version,
            "status": self.status,
            "uploaded_by": self.uploaded_by,
            "uploaded_by_name": self.uploader.name if self.uploader else None,
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_approvals:
            d["approvals"] = [a.to_dict() for a in self.approvals]
        return d

    def __repr__(self):
        return f"<DeliveryJob {self.id}: v{self.version} [{self.status}]>"


class Approval(db.Model):
    """Immutable review decision.  Rows are only ever inserted."""

    __tablename__ = "approvals"

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(
        db.Integer, db.ForeignKey("delivery_jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    verdict = db.Column(db.String(20), nullable=False)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    comments = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    delivery = db.relationship("DeliveryJob", back_populates="approvals")
    reviewer = db.relationship("User", foreign_keys=[reviewer_id])

    def to_dict(self):
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "verdict": self.verdict,
            "reviewer_id": self.reviewer_id,
            "reviewer_name": self.reviewer.name if self.reviewer else None,
            "comments": self.comments,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Approval {self.id}: delivery={self.delivery_id} {self.verdict}>"
