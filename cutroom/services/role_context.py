"""
Identity & role context.

``resolve(actor_id, project_id)`` returns a per-request snapshot of who
the actor is: their global role, plus (computed lazily, on first access)
their membership role in the project and whether their account email
matches the project's linked Client.  Nothing here writes.

The snapshot is deliberately not cached across requests; callers fetch
it once per request and reuse it.
"""

import logging
from functools import cached_property

from sqlalchemy import func

from cutroom.core.exceptions import NotFoundError
from cutroom.models import db
from cutroom.models.auth import User, global_role_at_least
from cutroom.models.project import Client, Project, ProjectMember

logger = logging.getLogger(__name__)


class RoleContext:
    """Actor snapshot for one (actor, project) pair."""

    def __init__(self, user: User, project_id: int | None = None):
        self.actor_id = user.id
        self.email = user.email
        self.global_role = user.global_role
        self.project_id = project_id

    def at_least(self, minimum: str) -> bool:
        return global_role_at_least(self.global_role, minimum)

    @cached_property
    def project_role(self) -> str | None:
        if self.project_id is None:
            return None
        return project_role_for(self.actor_id, self.project_id)

    @cached_property
    def is_client_of_project(self) -> bool:
        if self.project_id is None:
            return False
        return is_client_of(self.email, self.project_id)

    def for_project(self, project_id: int | None) -> "RoleContext":
        """Same actor, different project (fresh lazy fields)."""
        if project_id == self.project_id:
            return self
        ctx = RoleContext.__new__(RoleContext)
        ctx.actor_id = self.actor_id
        ctx.email = self.email
        ctx.global_role = self.global_role
        ctx.project_id = project_id
        return ctx

    def to_dict(self):
        return {
            "actor_id": self.actor_id,
            "global_role": self.global_role,
            "project_id": self.project_id,
            "project_role": self.project_role,
            "is_client_of_project": self.is_client_of_project,
        }

    def __repr__(self):
        return f"<RoleContext actor={self.actor_id} role={self.global_role} project={self.project_id}>"


# ── Lookups ──────────────────────────────────────────────────────────────────

def project_role_for(user_id: int, project_id: int) -> str | None:
    return db.session.execute(
        db.select(ProjectMember.role).filter_by(project_id=project_id, user_id=user_id)
    ).scalar_one_or_none()


def is_client_of(email: str | None, project_id: int) -> bool:
    """Email match between the actor and the Client linked to the project."""
    if not email:
        return False
    hit = db.session.execute(
        db.select(Project.id)
        .join(Client, Project.client_id == Client.id)
        .where(Project.id == project_id, func.lower(Client.email) == email.lower())
    ).first()
    return hit is not None


def client_project_ids(email: str | None) -> list[int]:
    """All project ids whose linked Client email equals *email*."""
    if not email:
        return []
    rows = db.session.execute(
        db.select(Project.id)
        .join(Client, Project.client_id == Client.id)
        .where(func.lower(Client.email) == email.lower())
    ).scalars()
    return list(rows)


def resolve(actor_id: int, project_id: int | None = None) -> RoleContext:
    """Build the role context for *actor_id*.

    Raises NotFoundError when the actor does not exist (or is
    deactivated).  A missing project is not an error: the lazy fields
    simply come back as None / False.
    """
    user = db.session.get(User, actor_id) if actor_id is not None else None
    if user is None or not user.is_active:
        raise NotFoundError("User", actor_id)
    return RoleContext(user, project_id)
