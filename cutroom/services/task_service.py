"""
Task service: business logic for the task board.

Positions are owned by ``task_board``; this module wraps each board
operation with authorization, validation, audit, notifications and the
project-room broadcast, all inside one ``unit_of_work()``.
"""

import logging

from sqlalchemy import delete, or_, update

from cutroom.core.exceptions import ForbiddenError, ValidationError
from cutroom.models import db
from cutroom.models.audit import record_audit
from cutroom.models.auth import User
from cutroom.models.comment import Comment
from cutroom.models.project import ProjectMember
from cutroom.models.task import TASK_PRIORITIES, Task
from cutroom.services import task_board
from cutroom.services.notification import NotificationEvent, NotificationService
from cutroom.services.permission_service import Action, require, resolve_resource
from cutroom.utils.helpers import get_or_raise, parse_choice, parse_date, parse_decimal, unit_of_work

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("title", "description", "priority", "due_date", "assignee_id",
                    "estimated_hours", "actual_hours")


def _validate_assignee(project_id, assignee_id):
    if assignee_id in (None, ""):
        return None
    try:
        assignee_id = int(assignee_id)
    except (TypeError, ValueError):
        raise ValidationError("assignee_id must be an integer", details={"assignee_id": "invalid"}) from None
    is_member = db.session.execute(
        db.select(ProjectMember.id).filter_by(project_id=project_id, user_id=assignee_id)
    ).first()
    if is_member is None:
        raise ValidationError("Assignee must be a project member.", details={"assignee_id": "not a member"})
    return assignee_id


def _validate_parent(project_id, parent_id):
    if parent_id in (None, ""):
        return None
    parent = db.session.get(Task, parent_id)
    if parent is None or parent.project_id != project_id:
        raise ValidationError("Parent task not found in this project.", details={"parent_task_id": "invalid"})
    if parent.parent_task_id is not None:
        raise ValidationError("Subtasks cannot have subtasks.", details={"parent_task_id": "too deep"})
    return parent.id


def _notify_assignee(task, actor_id):
    if task.assignee_id is None:
        return
    NotificationService.notify(
        [task.assignee_id],
        NotificationEvent(
            type="task_assigned",
            title=f"Task assigned: {task.title}",
            message=f"You were assigned to \"{task.title}\".",
            reference_type="task",
            reference_id=task.id,
            data={"project_id": task.project_id},
        ),
        exclude=actor_id,
    )


def _notify_status_change(task, actor_id, old_status):
    actor = db.session.get(User, actor_id)
    NotificationService.notify(
        {task.assignee_id, task.reporter_id},
        NotificationEvent(
            type="task_updated",
            title=f"Task status changed: {task.title}",
            message=f"{actor.name} changed status from \"{old_status}\" to \"{task.status}\".",
            reference_type="task",
            reference_id=task.id,
            data={"project_id": task.project_id},
        ),
        exclude=actor_id,
    )


# ── Queries ──────────────────────────────────────────────────────────────────

def list_tasks(actor_id, project_id, status=None, assignee_id=None, priority=None, search=None):
    require(actor_id, Action.VIEW_TASKS, resolve_resource("project", project_id))
    q = Task.query.filter_by(project_id=project_id)
    if status:
        q = q.filter_by(status=task_board.validate_status(status))
    if assignee_id:
        q = q.filter_by(assignee_id=assignee_id)
    if priority:
        q = q.filter_by(priority=parse_choice(priority, TASK_PRIORITIES, "priority"))
    if search and search.strip():
        term = f"%{search.strip()}%"
        q = q.filter(or_(Task.title.ilike(term), Task.description.ilike(term)))
    return q.order_by(Task.status, Task.position)


def get_board(actor_id, project_id):
    require(actor_id, Action.VIEW_TASKS, resolve_resource("project", project_id))
    return task_board.board(project_id)


def get_task(actor_id, task_id) -> Task:
    ref = resolve_resource("task", task_id)
    require(actor_id, Action.VIEW_TASKS, ref)
    return get_or_raise(Task, task_id, "Task")


# ── Mutations ────────────────────────────────────────────────────────────────

def create_task(actor_id, project_id, data: dict) -> Task:
    require(actor_id, Action.CREATE_TASK, resolve_resource("project", project_id))

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Task title is required.", details={"title": "required"})
    status = task_board.validate_status(data.get("status") or "todo")
    priority = parse_choice(data.get("priority") or "medium", TASK_PRIORITIES, "priority")

    with unit_of_work():
        task = Task(
            project_id=project_id,
            title=title,
            description=data.get("description") or "",
            status=status,
            priority=priority,
            assignee_id=_validate_assignee(project_id, data.get("assignee_id")),
            reporter_id=actor_id,
            parent_task_id=_validate_parent(project_id, data.get("parent_task_id")),
            due_date=parse_date(data.get("due_date"), "due_date"),
            estimated_hours=parse_decimal(data.get("estimated_hours"), "estimated_hours"),
        )
        task_board.place(task)
        _notify_assignee(task, actor_id)
        NotificationService.broadcast_to_project(
            project_id, "task_created", {"task": task.to_dict()}, team_only=True,
        )
        record_audit(
            actor_id=actor_id, action="task.create", entity_type="task", entity_id=task.id,
            project_id=project_id, details={"title": title, "status": status, "position": task.position},
        )

    logger.info("Task %s created in project %s", task.id, project_id,
                extra={"project_id": project_id, "user_id": actor_id})
    return task


def update_task(actor_id, task_id, data: dict) -> Task:
    """Edit task fields.  A status change moves the task to the end of the new column."""
    ref = resolve_resource("task", task_id)
    verdict = require(actor_id, Action.UPDATE_TASK, ref)

    if verdict.effective_role == "freelancer" and "assignee_id" in data \
            and data.get("assignee_id") != ref.assignee_id:
        raise ForbiddenError("Freelancers cannot reassign tasks.", action=Action.UPDATE_TASK.value)

    with unit_of_work():
        task = get_or_raise(Task, task_id, "Task")
        changes = {}
        previous_assignee = task.assignee_id

        if "title" in data:
            title = (data.get("title") or "").strip()
            if not title:
                raise ValidationError("Task title is required.", details={"title": "required"})
            task.title = title
        if "description" in data:
            task.description = data.get("description") or ""
        if "priority" in data:
            task.priority = parse_choice(data.get("priority"), TASK_PRIORITIES, "priority")
        if "due_date" in data:
            task.due_date = parse_date(data.get("due_date"), "due_date")
        if "assignee_id" in data:
            task.assignee_id = _validate_assignee(task.project_id, data.get("assignee_id"))
        for field in ("estimated_hours", "actual_hours"):
            if field in data:
                setattr(task, field, parse_decimal(data.get(field), field))
        changes.update({k: data[k] for k in _EDITABLE_FIELDS if k in data})
        db.session.flush()

        if "status" in data and data["status"] != task.status:
            new_status = task_board.validate_status(data["status"])
            task, old_status, _ = task_board.move(
                task.id, new_status, task_board.column_count(task.project_id, new_status),
            )
            changes["status"] = {"old": old_status, "new": new_status}
            _notify_status_change(task, actor_id, old_status)

        if task.assignee_id != previous_assignee:
            _notify_assignee(task, actor_id)

        NotificationService.broadcast_to_project(
            task.project_id, "task_updated", {"task": task.to_dict()}, team_only=True,
        )
        record_audit(
            actor_id=actor_id, action="task.update", entity_type="task", entity_id=task.id,
            project_id=task.project_id, details=changes,
        )
    return task


def move_task(actor_id, task_id, status, position) -> Task:
    """Board drag-and-drop: place the task at (status, position)."""
    ref = resolve_resource("task", task_id)
    require(actor_id, Action.MOVE_TASK, ref)

    with unit_of_work():
        task, old_status, old_position = task_board.move(task_id, status, position)
        NotificationService.broadcast_to_project(
            task.project_id, "task_moved",
            {
                "task_id": task.id,
                "from": {"status": old_status, "position": old_position},
                "to": {"status": task.status, "position": task.position},
            },
            team_only=True,
        )
        record_audit(
            actor_id=actor_id, action="task.move", entity_type="task", entity_id=task.id,
            project_id=task.project_id,
            details={"from": [old_status, old_position], "to": [task.status, task.position]},
        )
    return task


def delete_task(actor_id, task_id) -> dict:
    ref = resolve_resource("task", task_id)
    require(actor_id, Action.DELETE_TASK, ref, message="You can only delete tasks you reported.")

    with unit_of_work():
        db.session.execute(
            update(Task).where(Task.parent_task_id == task_id).values(parent_task_id=None)
        )
        db.session.execute(
            delete(Comment).where(Comment.entity_type == "task", Comment.entity_id == task_id)
        )
        snapshot = task_board.remove(task_id)
        NotificationService.broadcast_to_project(
            ref.project_id, "task_deleted", {"task_id": task_id, "status": snapshot["status"]},
            team_only=True,
        )
        record_audit(
            actor_id=actor_id, action="task.delete", entity_type="task", entity_id=task_id,
            project_id=ref.project_id, details={"title": snapshot["title"]},
        )
    return snapshot
