"""
Cutroom Collaboration Platform
Project domain models.

Models:
    - Client: external stakeholder; linked to projects by Project.client_id
    - Project: unit of work with a lifecycle status and an immutable creator
    - ProjectMember: (project, user) → project role, unique per pair
"""

from datetime import datetime, timezone

from cutroom.models import db

# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = ("draft", "in_progress", "review", "delivered", "completed", "archived")
PROJECT_ROLES = ("freelancer", "editor", "manager")


class Client(db.Model):
    """
    External stakeholder.

    A user counts as this client's representative when their account
    email equals ``Client.email``; that link is derived at authorization
    time and never stored as a membership.
    """

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    company = db.Column(db.String(200))
    email = db.Column(db.String(255), index=True)
    phone = db.Column(db.String(50))
    notes = db.Column(db.Text, default="")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    projects = db.relationship("Project", back_populates="client", lazy="dynamic")

    def to_dict(self, include_counts=False):
        d = {
            "id": self.id,
            "name": self.name,
            "company": self.company,
            "email": self.email,
            "phone": self.phone,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_counts:
            d["project_count"] = self.projects.count()
        return d

    def __repr__(self):
        return f"<Client {self.id}: {self.name}>"


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    deadline = db.Column(db.Date)
    budget = db.Column(db.Numeric(12, 2))
    currency = db.Column(db.String(3), default="USD")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    client = db.relationship("Client", back_populates="projects")
    creator = db.relationship("User", foreign_keys=[created_by])
    members = db.relationship(
        "ProjectMember", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    tasks = db.relationship(
        "Task", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    deliveries = db.relationship(
        "DeliveryJob", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def is_archived(self):
        return self.status == "archived"

    def to_dict(self, include_members=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "created_by": self.created_by,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "budget": float(self.budget) if self.budget is not None else None,
            "currency": self.currency,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_members:
            d["members"] = [m.to_dict() for m in self.members.order_by(ProjectMember.joined_at)]
        return d

    def __repr__(self):
        return f"<Project {self.id}: {self.name} [{self.status}]>"


class ProjectMember(db.Model):
    __tablename__ = "project_members"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    role = db.Column(db.String(20), nullable=False, default="editor")
    joined_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    added_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        db.Index("ix_project_members_project", "project_id"),
        db.Index("ix_project_members_user", "user_id"),
    )

    project = db.relationship("Project", back_populates="members")
    user = db.relationship("User", back_populates="memberships", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "project_role": self.role,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
            "user": self.user.to_summary() if self.user else None,
        }
