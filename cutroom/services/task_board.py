"""
Task board ordering engine.

Invariant (after every commit): for each (project, status) column, task
positions are exactly {0, 1, …, count-1}.

Every function here writes through the current session and flushes but
does not commit; run it inside ``unit_of_work()`` so the shifted range
and the moved row land in one transaction or not at all.  Each
operation first locks the project row (SELECT … FOR UPDATE where the
store supports it), which serialises concurrent board writes within one
project while leaving other projects untouched.

Shifted ranges are always written before the moved task's own row.
"""

import logging

from sqlalchemy import delete, func, update

from cutroom.core.exceptions import NotFoundError, ValidationError
from cutroom.models import db
from cutroom.models.project import Project
from cutroom.models.task import TASK_STATUSES, Task
from cutroom.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)


def _lock_project(project_id):
    db.session.execute(
        db.select(Project.id).where(Project.id == project_id).with_for_update()
    ).first()


def column_count(project_id, status) -> int:
    return db.session.execute(
        db.select(func.count(Task.id)).where(Task.project_id == project_id, Task.status == status)
    ).scalar_one()


def _shift(project_id, status, delta, *criteria):
    db.session.execute(
        update(Task)
        .where(Task.project_id == project_id, Task.status == status, *criteria)
        .values(position=Task.position + delta)
    )


def validate_status(status):
    if status not in TASK_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}.",
            details={"status": "invalid"},
        )
    return status


def validate_position(position):
    if isinstance(position, bool) or not isinstance(position, int) or position < 0:
        raise ValidationError(
            "Valid position (non-negative integer) is required.",
            details={"position": "invalid"},
        )
    return position


# ── Operations ───────────────────────────────────────────────────────────────

def place(task: Task) -> Task:
    """Append a new task at the end of its column."""
    validate_status(task.status)
    _lock_project(task.project_id)
    task.position = column_count(task.project_id, task.status)
    db.session.add(task)
    db.session.flush()
    return task


def move(task_id, new_status, new_position):
    """Move a task to (new_status, new_position).

    Positions beyond the end of the target column are clamped to the end.

    Returns:
        (task, old_status, old_position)
    """
    validate_status(new_status)
    validate_position(new_position)

    task = get_or_raise(Task, task_id, "Task")
    _lock_project(task.project_id)
    # Re-read under the lock; the row may have moved or vanished since.
    task = get_or_raise(Task, task_id, "Task", for_update=True)
    project_id, old_status, old_position = task.project_id, task.status, task.position

    if old_status == new_status:
        new_position = min(new_position, column_count(project_id, new_status) - 1)
        if new_position == old_position:
            return task, old_status, old_position
        if new_position > old_position:
            _shift(project_id, old_status, -1,
                   Task.id != task.id, Task.position > old_position, Task.position <= new_position)
        else:
            _shift(project_id, old_status, +1,
                   Task.id != task.id, Task.position >= new_position, Task.position < old_position)
    else:
        new_position = min(new_position, column_count(project_id, new_status))
        _shift(project_id, old_status, -1, Task.id != task.id, Task.position > old_position)
        _shift(project_id, new_status, +1, Task.position >= new_position)

    result = db.session.execute(
        update(Task).where(Task.id == task.id).values(status=new_status, position=new_position)
    )
    if result.rowcount == 0:
        raise NotFoundError("Task", task_id)
    db.session.flush()
    db.session.refresh(task)

    logger.debug(
        "Moved task %s %s#%s → %s#%s", task.id, old_status, old_position, new_status, new_position,
        extra={"project_id": project_id},
    )
    return task, old_status, old_position


def remove(task_id) -> dict:
    """Delete a task and close the gap it leaves.  Returns the deleted row as a dict."""
    task = get_or_raise(Task, task_id, "Task")
    _lock_project(task.project_id)
    task = get_or_raise(Task, task_id, "Task", for_update=True)
    snapshot = task.to_dict()
    project_id, status, position = task.project_id, task.status, task.position

    result = db.session.execute(delete(Task).where(Task.id == task.id))
    if result.rowcount == 0:
        raise NotFoundError("Task", task_id)
    _shift(project_id, status, -1, Task.position > position)
    db.session.flush()
    return snapshot


# ── Read side ────────────────────────────────────────────────────────────────

def column_positions(project_id, status) -> list[int]:
    return list(db.session.execute(
        db.select(Task.position)
        .where(Task.project_id == project_id, Task.status == status)
        .order_by(Task.position)
    ).scalars())


def board(project_id) -> dict:
    """Kanban view: {status: [task dicts in position order]}.

    Subtasks keep their own place in their column and are also nested
    under their parent card.
    """
    columns = {status: [] for status in TASK_STATUSES}
    tasks = (
        Task.query.filter_by(project_id=project_id)
        .order_by(Task.status, Task.position, Task.id)
        .all()
    )
    children = {}
    for task in tasks:
        if task.parent_task_id is not None:
            children.setdefault(task.parent_task_id, []).append(task.to_dict())
    for task in tasks:
        item = task.to_dict()
        item["subtasks"] = children.get(task.id, [])
        item["subtask_count"] = len(item["subtasks"])
        columns.setdefault(task.status, []).append(item)
    return columns
