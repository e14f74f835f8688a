"""
Dashboard service: role-aware home screen and admin platform stats.

    admin / manager      → recent projects, task + delivery summaries,
                           recent audit activity, team counts by role
    editor / freelancer  → my tasks, my task summary, my projects,
                           my deliveries
    client               → linked projects with delivery counts and the
                           deliveries awaiting review

Every variant carries ``unread_notifications``.
"""

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func

from cutroom.models import db
from cutroom.models.audit import AuditLog
from cutroom.models.auth import Session, User
from cutroom.models.comment import Comment
from cutroom.models.delivery import DELIVERY_STATUSES, Approval, DeliveryJob
from cutroom.models.project import PROJECT_STATUSES, Project, ProjectMember
from cutroom.models.task import TASK_STATUSES, Task
from cutroom.services import user_service
from cutroom.services.notification import NotificationService
from cutroom.services.role_context import client_project_ids, resolve

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


def _counts(column, *criteria, keys=()):
    rows = db.session.execute(
        db.select(column, func.count()).where(*criteria).group_by(column)
    ).all()
    counts = dict(rows)
    return {k: counts.get(k, 0) for k in keys} if keys else counts


def _task_summary(*criteria):
    by_status = _counts(Task.status, *criteria, keys=TASK_STATUSES)
    overdue = db.session.execute(
        db.select(func.count(Task.id)).where(
            *criteria, Task.status != "done", Task.due_date.isnot(None), Task.due_date < date.today(),
        )
    ).scalar_one()
    return {"total": sum(by_status.values()), "by_status": by_status, "overdue": overdue}


def _manager_view(ctx):
    recent = Project.query.filter(Project.status != "archived") \
        .order_by(Project.updated_at.desc(), Project.id.desc()).limit(RECENT_LIMIT).all()
    activity = AuditLog.query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(RECENT_LIMIT).all()
    return {
        "recent_projects": [p.to_dict() for p in recent],
        "projects_by_status": _counts(Project.status, keys=PROJECT_STATUSES),
        "task_summary": _task_summary(),
        "delivery_summary": _counts(DeliveryJob.status, keys=DELIVERY_STATUSES),
        "recent_activity": [a.to_dict() for a in activity],
        "team": user_service.count_by_role(),
    }


def _member_view(ctx):
    my_tasks = Task.query.filter(Task.assignee_id == ctx.actor_id, Task.status != "done") \
        .order_by(Task.due_date.is_(None), Task.due_date, Task.id).limit(RECENT_LIMIT * 2).all()
    project_ids = db.session.execute(
        db.select(ProjectMember.project_id).filter_by(user_id=ctx.actor_id)
    ).scalars().all()
    projects = Project.query.filter(Project.id.in_(project_ids), Project.status != "archived") \
        .order_by(Project.updated_at.desc()).all() if project_ids else []
    deliveries = DeliveryJob.query.filter_by(uploaded_by=ctx.actor_id) \
        .order_by(DeliveryJob.created_at.desc(), DeliveryJob.id.desc()).limit(RECENT_LIMIT).all()
    return {
        "my_tasks": [t.to_dict() for t in my_tasks],
        "task_summary": _task_summary(Task.assignee_id == ctx.actor_id),
        "my_projects": [p.to_dict() for p in projects],
        "my_deliveries": [d.to_dict() for d in deliveries],
    }


def _client_view(ctx):
    project_ids = client_project_ids(ctx.email)
    if not project_ids:
        return {"projects": [], "awaiting_review": []}
    delivery_counts = dict(db.session.execute(
        db.select(DeliveryJob.project_id, func.count(DeliveryJob.id))
        .where(DeliveryJob.project_id.in_(project_ids)).group_by(DeliveryJob.project_id)
    ).all())
    projects = []
    for project in Project.query.filter(Project.id.in_(project_ids)).order_by(Project.updated_at.desc()):
        item = project.to_dict()
        item["delivery_count"] = delivery_counts.get(project.id, 0)
        projects.append(item)
    awaiting = DeliveryJob.query.filter(
        DeliveryJob.project_id.in_(project_ids), DeliveryJob.status == "in_review",
    ).order_by(DeliveryJob.updated_at.desc(), DeliveryJob.id.desc()).all()
    return {"projects": projects, "awaiting_review": [d.to_dict() for d in awaiting]}


def get_dashboard(actor_id) -> dict:
    ctx = resolve(actor_id)
    if ctx.at_least("manager"):
        body = _manager_view(ctx)
    elif ctx.global_role == "client":
        body = _client_view(ctx)
    else:
        body = _member_view(ctx)
    body["role"] = ctx.global_role
    body["unread_notifications"] = NotificationService.unread_count(actor_id)
    return body


# ── Admin ────────────────────────────────────────────────────────────────────

def platform_stats() -> dict:
    since = datetime.now(timezone.utc) - timedelta(days=30)
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return {
        "users": {
            "total": User.query.count(),
            "active": User.query.filter_by(is_active=True).count(),
            "by_role": user_service.count_by_role(),
            "new_last_30_days": User.query.filter(User.created_at >= since).count(),
        },
        "projects": {
            "total": Project.query.count(),
            "by_status": _counts(Project.status, keys=PROJECT_STATUSES),
        },
        "tasks": _task_summary(),
        "deliveries": {
            "total": DeliveryJob.query.count(),
            "by_status": _counts(DeliveryJob.status, keys=DELIVERY_STATUSES),
            "approvals": Approval.query.count(),
        },
        "comments": Comment.query.count(),
        "active_sessions": Session.query.filter(
            Session.is_active.is_(True), Session.expires_at > now,
        ).count(),
    }
