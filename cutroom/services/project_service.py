"""
Project service: projects, memberships and per-project stats.

The creator is always a ``manager`` member of their project and cannot be
removed from it.  Archiving is a status change; only a hard delete (admin)
removes the project and everything hanging off it.
"""

import logging
from datetime import date

from sqlalchemy import func, or_

from cutroom.core.exceptions import NotFoundError, ValidationError
from cutroom.models import db
from cutroom.models.audit import record_audit
from cutroom.models.auth import User
from cutroom.models.delivery import DeliveryJob
from cutroom.models.project import PROJECT_ROLES, PROJECT_STATUSES, Client, Project, ProjectMember
from cutroom.models.task import TASK_STATUSES, Task
from cutroom.services.notification import NotificationEvent, NotificationService
from cutroom.services.permission_service import Action, require, resolve_resource
from cutroom.services.role_context import client_project_ids, resolve
from cutroom.utils.helpers import get_or_raise, parse_choice, parse_date, parse_decimal, unit_of_work

logger = logging.getLogger(__name__)


def _validate_client(client_id):
    if client_id in (None, ""):
        return None
    client = db.session.get(Client, client_id)
    if client is None:
        raise ValidationError("Client not found.", details={"client_id": "invalid"})
    return client.id


def _upsert_member(project_id, user_id, role, added_by) -> tuple[ProjectMember, bool]:
    member = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()
    if member is not None:
        member.role = role
        return member, False
    member = ProjectMember(project_id=project_id, user_id=user_id, role=role, added_by=added_by)
    db.session.add(member)
    return member, True


# ── Visibility ───────────────────────────────────────────────────────────────

def visible_project_ids(actor_id) -> list[int] | None:
    """Project ids the actor may see; None means every project."""
    ctx = resolve(actor_id)
    if ctx.at_least("manager"):
        return None
    member_ids = db.session.execute(
        db.select(ProjectMember.project_id).filter_by(user_id=actor_id)
    ).scalars()
    return sorted(set(member_ids) | set(client_project_ids(ctx.email)))


def list_projects(actor_id, status=None, include_archived=False):
    q = Project.query
    visible = visible_project_ids(actor_id)
    if visible is not None:
        q = q.filter(Project.id.in_(visible))
    if status:
        q = q.filter_by(status=parse_choice(status, PROJECT_STATUSES, "status"))
    elif not include_archived:
        q = q.filter(Project.status != "archived")
    return q.order_by(Project.updated_at.desc(), Project.id.desc())


def get_project(actor_id, project_id) -> Project:
    require(actor_id, Action.VIEW_PROJECT, resolve_resource("project", project_id))
    return get_or_raise(Project, project_id, "Project")


# ── Mutations ────────────────────────────────────────────────────────────────

def create_project(actor_id, data: dict) -> Project:
    require(actor_id, Action.CREATE_PROJECT)

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Project name is required.", details={"name": "required"})

    with unit_of_work():
        project = Project(
            name=name,
            description=data.get("description") or "",
            status=parse_choice(data.get("status") or "draft", PROJECT_STATUSES, "status"),
            client_id=_validate_client(data.get("client_id")),
            created_by=actor_id,
            deadline=parse_date(data.get("deadline"), "deadline"),
            budget=parse_decimal(data.get("budget"), "budget"),
            currency=(data.get("currency") or "USD").upper()[:3],
        )
        db.session.add(project)
        db.session.flush()
        _upsert_member(project.id, actor_id, "manager", actor_id)
        db.session.flush()
        record_audit(
            actor_id=actor_id, action="project.create", entity_type="project",
            entity_id=project.id, project_id=project.id, details={"name": name},
        )

    logger.info("Project %s created", project.id, extra={"project_id": project.id, "user_id": actor_id})
    return project


def update_project(actor_id, project_id, data: dict) -> Project:
    require(actor_id, Action.UPDATE_PROJECT, resolve_resource("project", project_id))

    with unit_of_work():
        project = get_or_raise(Project, project_id, "Project")
        changes = {}
        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("Project name is required.", details={"name": "required"})
            project.name = name
        if "description" in data:
            project.description = data.get("description") or ""
        if "status" in data:
            project.status = parse_choice(data.get("status"), PROJECT_STATUSES, "status")
        if "deadline" in data:
            project.deadline = parse_date(data.get("deadline"), "deadline")
        if "budget" in data:
            project.budget = parse_decimal(data.get("budget"), "budget")
        if "currency" in data:
            project.currency = (data.get("currency") or "USD").upper()[:3]
        if "client_id" in data:
            project.client_id = _validate_client(data.get("client_id"))
        for key in ("name", "description", "status", "deadline", "budget", "currency", "client_id"):
            if key in data:
                changes[key] = data[key]
        db.session.flush()
        NotificationService.broadcast_to_project(project.id, "project_updated", {"project": project.to_dict()})
        record_audit(
            actor_id=actor_id, action="project.update", entity_type="project",
            entity_id=project.id, project_id=project.id, details=changes,
        )
    return project


def archive_project(actor_id, project_id) -> Project:
    require(actor_id, Action.ARCHIVE_PROJECT, resolve_resource("project", project_id))
    with unit_of_work():
        project = get_or_raise(Project, project_id, "Project")
        previous = project.status
        project.status = "archived"
        db.session.flush()
        record_audit(
            actor_id=actor_id, action="project.archive", entity_type="project",
            entity_id=project.id, project_id=project.id, details={"previous_status": previous},
        )
    return project


def delete_project(actor_id, project_id) -> None:
    """Hard delete.  Memberships, tasks, deliveries and approvals cascade."""
    require(actor_id, Action.DELETE_PROJECT, resolve_resource("project", project_id))
    with unit_of_work():
        project = get_or_raise(Project, project_id, "Project")
        name = project.name
        db.session.delete(project)
        db.session.flush()
        record_audit(
            actor_id=actor_id, action="project.delete", entity_type="project",
            entity_id=project_id, details={"name": name},
        )
    logger.warning("Project %s deleted", project_id, extra={"project_id": project_id, "user_id": actor_id})


# ── Members ──────────────────────────────────────────────────────────────────

def list_members(actor_id, project_id) -> list[ProjectMember]:
    require(actor_id, Action.VIEW_PROJECT, resolve_resource("project", project_id))
    return (
        ProjectMember.query.filter_by(project_id=project_id)
        .order_by(ProjectMember.joined_at, ProjectMember.id)
        .all()
    )


def add_member(actor_id, project_id, data: dict) -> tuple[ProjectMember, bool]:
    """Add or re-role a member by ``user_id`` or ``email``.

    Returns:
        (member, created)
    """
    require(actor_id, Action.MANAGE_MEMBERS, resolve_resource("project", project_id))

    role = parse_choice(data.get("role") or "editor", PROJECT_ROLES, "role")
    if data.get("user_id"):
        user = db.session.get(User, data["user_id"])
    elif data.get("email"):
        user = User.query.filter(func.lower(User.email) == str(data["email"]).strip().lower()).first()
    else:
        raise ValidationError("user_id or email is required.", details={"user_id": "required"})
    if user is None or not user.is_active:
        raise NotFoundError("User", data.get("user_id") or data.get("email"))

    with unit_of_work():
        project = get_or_raise(Project, project_id, "Project")
        if user.id == project.created_by and role != "manager":
            raise ValidationError("The project creator must stay a manager.", details={"role": "creator"})
        member, created = _upsert_member(project_id, user.id, role, actor_id)
        db.session.flush()
        if created:
            NotificationService.notify(
                [user.id],
                NotificationEvent(
                    type="project_invite",
                    title=f"Added to project: {project.name}",
                    message=f"You were added to \"{project.name}\" as {role}.",
                    reference_type="project",
                    reference_id=project.id,
                ),
                exclude=actor_id,
            )
        NotificationService.broadcast_to_project(
            project_id, "member_added" if created else "member_updated",
            {"user_id": user.id, "project_role": role},
        )
        record_audit(
            actor_id=actor_id, action="project.member_add" if created else "project.member_role",
            entity_type="project", entity_id=project_id, project_id=project_id,
            details={"user_id": user.id, "role": role},
        )
    return member, created


def remove_member(actor_id, project_id, user_id) -> None:
    require(actor_id, Action.MANAGE_MEMBERS, resolve_resource("project", project_id))
    with unit_of_work():
        project = get_or_raise(Project, project_id, "Project")
        if project.created_by == user_id:
            raise ValidationError("The project creator cannot be removed.", details={"user_id": "creator"})
        member = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()
        if member is None:
            raise NotFoundError("Member", user_id)
        db.session.delete(member)
        db.session.flush()
        NotificationService.broadcast_to_project(project_id, "member_removed", {"user_id": user_id})
        record_audit(
            actor_id=actor_id, action="project.member_remove", entity_type="project",
            entity_id=project_id, project_id=project_id, details={"user_id": user_id},
        )


# ── Stats ────────────────────────────────────────────────────────────────────

def project_stats(actor_id, project_id) -> dict:
    require(actor_id, Action.VIEW_PROJECT, resolve_resource("project", project_id))

    task_counts = dict(db.session.execute(
        db.select(Task.status, func.count(Task.id))
        .where(Task.project_id == project_id).group_by(Task.status)
    ).all())
    delivery_counts = dict(db.session.execute(
        db.select(DeliveryJob.status, func.count(DeliveryJob.id))
        .where(DeliveryJob.project_id == project_id).group_by(DeliveryJob.status)
    ).all())
    member_count = db.session.execute(
        db.select(func.count(ProjectMember.id)).where(ProjectMember.project_id == project_id)
    ).scalar_one()
    overdue = db.session.execute(
        db.select(func.count(Task.id)).where(
            Task.project_id == project_id,
            Task.status != "done",
            Task.due_date.isnot(None),
            Task.due_date < date.today(),
        )
    ).scalar_one()

    total_tasks = sum(task_counts.values())
    return {
        "project_id": project_id,
        "tasks": {
            "total": total_tasks,
            "by_status": {s: task_counts.get(s, 0) for s in TASK_STATUSES},
            "overdue": overdue,
            "completion_pct": round(100 * task_counts.get("done", 0) / total_tasks) if total_tasks else 0,
        },
        "deliveries": {
            "total": sum(delivery_counts.values()),
            "by_status": delivery_counts,
        },
        "member_count": member_count,
    }


def search_projects(actor_id, term):
    """Name/description substring match over the actor's visible projects."""
    like = f"%{term.strip()}%"
    return list_projects(actor_id, include_archived=True).filter(
        or_(Project.name.ilike(like), Project.description.ilike(like))
    )
