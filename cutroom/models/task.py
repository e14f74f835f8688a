"""
Cutroom Collaboration Platform
Task board model.

``position`` is a dense zero-based rank within the (project_id, status)
column.  Only cutroom.services.task_board writes it.
"""

from datetime import datetime, timezone

from cutroom.models import db

# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = ("todo", "in_progress", "review", "done")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")


class Task(db.Model):
    __tablename__ = "tasks"
    __table_args__ = (
        # Not unique: shifts pass through transient duplicates mid-transaction.
        db.Index("ix_tasks_column", "project_id", "status", "position"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="todo")
    priority = db.Column(db.String(10), nullable=False, default="medium")
    position = db.Column(db.Integer, nullable=False, default=0)
    assignee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    reporter_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    parent_task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    due_date = db.Column(db.Date)
    estimated_hours = db.Column(db.Numeric(8, 2))
    actual_hours = db.Column(db.Numeric(8, 2))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project", back_populates="tasks")
    assignee = db.relationship("User", foreign_keys=[assignee_id])
    reporter = db.relationship("User", foreign_keys=[reporter_id])
    subtasks = db.relationship(
        "Task", backref=db.backref("parent", remote_side=[id]), lazy="dynamic",
    )

    def to_dict(self, include_subtasks=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "position": self.position,
            "assignee_id": self.assignee_id,
            "assignee_name": self.assignee.name if self.assignee else None,
            "reporter_id": self.reporter_id,
            "parent_task_id": self.parent_task_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "estimated_hours": float(self.estimated_hours) if self.estimated_hours is not None else None,
            "actual_hours": float(self.actual_hours) if self.actual_hours is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_subtasks:
            d["subtasks"] = [
                s.to_dict() for s in self.subtasks.order_by(Task.status, Task.position)
            ]
        return d

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}#{self.position}]>"
