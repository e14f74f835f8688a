"""
Comment service: threads on projects, tasks and deliveries.

Targets go through the one polymorphic resolver, so a comment on any
kind of entity is authorized the same way.  Recipients of a new comment
are the people attached to the target plus anyone @mentioned who may
read the thread; the author is never notified.
"""

import logging

from sqlalchemy import func, or_

from cutroom.core.exceptions import ValidationError
from cutroom.models import db
from cutroom.models.audit import record_audit
from cutroom.models.auth import User
from cutroom.models.comment import Comment
from cutroom.models.delivery import DeliveryJob
from cutroom.models.project import Project
from cutroom.models.task import Task
from cutroom.services.delivery_review import project_manager_ids
from cutroom.services.notification import NotificationEvent, NotificationService
from cutroom.services.permission_service import (
    Action,
    authorize,
    require,
    resolve_comment_target,
    resolve_resource,
)
from cutroom.utils.helpers import get_or_raise, unit_of_work
from cutroom.utils.mentions import extract_mentions

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 10_000


def _target_label(entity_type, entity_id):
    model = {"project": Project, "task": Task, "delivery": DeliveryJob}[entity_type]
    row = db.session.get(model, entity_id)
    name = getattr(row, "name", None) or getattr(row, "title", None)
    return f"{entity_type} \"{name}\"" if name else entity_type


def _target_watchers(entity_type, entity_id, project_id) -> set:
    if entity_type == "task":
        task = db.session.get(Task, entity_id)
        return {task.assignee_id, task.reporter_id}
    if entity_type == "delivery":
        delivery = db.session.get(DeliveryJob, entity_id)
        return {delivery.uploaded_by, delivery.reviewed_by}
    return set(project_manager_ids(project_id))


def mentioned_user_ids(content) -> set:
    """Active users whose full name or email local part matches a mention."""
    names = extract_mentions(content)
    if not names:
        return set()
    email_matches = [func.lower(User.email).like(f"{name}@%") for name in names if " " not in name]
    rows = db.session.execute(
        db.select(User.id).where(
            User.is_active.is_(True),
            or_(func.lower(User.name).in_(names), *email_matches),
        )
    ).scalars()
    return set(rows)


# ── Queries ──────────────────────────────────────────────────────────────────

def list_comments(actor_id, entity_type, entity_id):
    ref = resolve_comment_target(entity_type, entity_id)
    require(actor_id, Action.VIEW_COMMENTS, ref)
    return (
        Comment.query.filter_by(entity_type=entity_type, entity_id=ref.id)
        .order_by(Comment.created_at, Comment.id)
    )


# ── Mutations ────────────────────────────────────────────────────────────────

def create_comment(actor_id, entity_type, entity_id, content) -> Comment:
    ref = resolve_comment_target(entity_type, entity_id)
    require(actor_id, Action.CREATE_COMMENT, ref)

    content = (content or "").strip()
    if not content:
        raise ValidationError("Comment content is required.", details={"content": "required"})
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError("Comment is too long.", details={"content": "too long"})

    with unit_of_work():
        comment = Comment(
            entity_type=entity_type, entity_id=ref.id, project_id=ref.project_id,
            user_id=actor_id, content=content,
        )
        db.session.add(comment)
        db.session.flush()

        author = db.session.get(User, actor_id)
        label = _target_label(entity_type, ref.id)
        mentioned = {
            uid for uid in mentioned_user_ids(content) - {actor_id}
            if authorize(uid, Action.VIEW_COMMENTS, ref)
        }
        watchers = _target_watchers(entity_type, ref.id, ref.project_id) - mentioned

        base = {
            "reference_type": entity_type,
            "reference_id": ref.id,
            "data": {"project_id": ref.project_id, "comment_id": comment.id},
        }
        NotificationService.notify(
            watchers,
            NotificationEvent(
                type="comment_added",
                title=f"{author.name} commented on {label}",
                message=content[:200],
                **base,
            ),
            exclude=actor_id,
        )
        NotificationService.notify(
            mentioned,
            NotificationEvent(
                type="mention",
                title=f"{author.name} mentioned you on {label}",
                message=content[:200],
                **base,
            ),
            exclude=actor_id,
        )
        NotificationService.broadcast_to_project(
            ref.project_id, "comment_added", {"comment": comment.to_dict()},
            team_only=entity_type == "task",
        )
        record_audit(
            actor_id=actor_id, action="comment.create", entity_type="comment", entity_id=comment.id,
            project_id=ref.project_id, details={"target": f"{entity_type}:{ref.id}"},
        )
    return comment


def delete_comment(actor_id, comment_id) -> None:
    ref = resolve_resource("comment", comment_id)
    require(actor_id, Action.DELETE_COMMENT, ref, message="You can only delete your own comments.")
    with unit_of_work():
        comment = get_or_raise(Comment, comment_id, "Comment")
        db.session.delete(comment)
        db.session.flush()
        NotificationService.broadcast_to_project(
            ref.project_id, "comment_deleted", {"comment_id": comment_id},
            team_only=ref.target_kind == "task",
        )
        record_audit(
            actor_id=actor_id, action="comment.delete", entity_type="comment", entity_id=comment_id,
            project_id=ref.project_id,
        )
