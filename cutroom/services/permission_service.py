"""
Authorization resolver.

Answers "can this actor perform this action on this resource?" with a
``Verdict`` instead of an exception: denial is a normal outcome.  Only
``require()`` turns a deny into ``ForbiddenError``.

Resolution order (first match wins):
    1. global role admin           → allow (capability override)
    2. global-role allow-list       → allow when the actor's global role
                                      meets the action's minimum; no
                                      project lookup happens here
    3. project membership role      → allow/deny per PROJECT_RULES; a
                                      member who is denied stays denied
    4. client linkage (email match) → reduced set in CLIENT_RULES,
                                      never anything on tasks
    5. otherwise                    → deny

Resources are described by ``ResourceRef`` built through the single
polymorphic resolver ``resolve_resource(kind, id)``, so comments on a
project, task or delivery all take the same path.
"""

import enum
import logging
from dataclasses import dataclass

from cutroom.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from cutroom.models import db
from cutroom.models.comment import COMMENT_ENTITY_TYPES, Comment
from cutroom.models.delivery import DeliveryJob
from cutroom.models.project import Project
from cutroom.models.task import Task
from cutroom.services.role_context import RoleContext, resolve

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    # Global (not project-bound)
    CREATE_PROJECT = "create_project"
    MANAGE_CLIENTS = "manage_clients"
    DELETE_CLIENT = "delete_client"
    ADMIN = "admin"
    # Project
    VIEW_PROJECT = "view_project"
    UPDATE_PROJECT = "update_project"
    ARCHIVE_PROJECT = "archive_project"
    DELETE_PROJECT = "delete_project"
    MANAGE_MEMBERS = "manage_members"
    # Tasks
    VIEW_TASKS = "view_tasks"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    MOVE_TASK = "move_task"
    DELETE_TASK = "delete_task"
    # Deliveries
    VIEW_DELIVERIES = "view_deliveries"
    UPLOAD_DELIVERY = "upload_delivery"
    UPDATE_DELIVERY = "update_delivery"
    SUBMIT_DELIVERY = "submit_delivery"
    REVIEW_DELIVERY = "review_delivery"
    # Comments
    VIEW_COMMENTS = "view_comments"
    CREATE_COMMENT = "create_comment"
    DELETE_COMMENT = "delete_comment"


@dataclass(frozen=True)
class ResourceRef:
    """What an action targets, with the ownership fields rules need."""

    kind: str
    id: int | None
    project_id: int | None
    assignee_id: int | None = None
    reporter_id: int | None = None
    uploader_id: int | None = None
    author_id: int | None = None
    target_kind: str | None = None

    @classmethod
    def for_project(cls, project_id):
        return cls(kind="project", id=project_id, project_id=project_id)


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    effective_role: str | None = None
    reason: str = ""

    def __bool__(self):
        return self.allowed


# ── Rule predicates ──────────────────────────────────────────────────────────

def _always(ctx, res):
    return True


def _is_assignee(ctx, res):
    return res.assignee_id is not None and res.assignee_id == ctx.actor_id


def _is_reporter(ctx, res):
    return res.reporter_id == ctx.actor_id


def _is_uploader(ctx, res):
    return res.uploader_id == ctx.actor_id


def _is_author(ctx, res):
    return res.author_id == ctx.actor_id


def _assignee_when_task(ctx, res):
    return res.kind != "task" or _is_assignee(ctx, res)


def _not_task(ctx, res):
    return res.kind != "task" and res.target_kind != "task"


def _own_comment_not_task(ctx, res):
    return _not_task(ctx, res) and _is_author(ctx, res)


# ── Tables ───────────────────────────────────────────────────────────────────

_ALL_PROJECT_ROLES = {"manager": _always, "editor": _always, "freelancer": _always}

# Step 2: minimum global role that grants the action outright.
GLOBAL_ALLOW: dict[Action, str] = {
    Action.CREATE_PROJECT: "manager",
    Action.MANAGE_CLIENTS: "manager",
}

# Step 3: action → {project role → predicate}.  Every key is project-bound.
PROJECT_RULES: dict[Action, dict] = {
    Action.VIEW_PROJECT: _ALL_PROJECT_ROLES,
    Action.UPDATE_PROJECT: {"manager": _always},
    Action.ARCHIVE_PROJECT: {"manager": _always},
    Action.DELETE_PROJECT: {},
    Action.MANAGE_MEMBERS: {"manager": _always},
    Action.VIEW_TASKS: _ALL_PROJECT_ROLES,
    Action.CREATE_TASK: {"manager": _always, "editor": _always},
    Action.UPDATE_TASK: {"manager": _always, "editor": _always, "freelancer": _is_assignee},
    Action.MOVE_TASK: {"manager": _always, "editor": _always, "freelancer": _is_assignee},
    Action.DELETE_TASK: {"manager": _always, "editor": _is_reporter},
    Action.VIEW_DELIVERIES: _ALL_PROJECT_ROLES,
    Action.UPLOAD_DELIVERY: {"manager": _always, "editor": _always},
    Action.UPDATE_DELIVERY: {"manager": _always, "editor": _is_uploader},
    Action.SUBMIT_DELIVERY: {"manager": _always, "editor": _always},
    Action.REVIEW_DELIVERY: {"manager": _always},
    Action.VIEW_COMMENTS: {"manager": _always, "editor": _always, "freelancer": _assignee_when_task},
    Action.CREATE_COMMENT: {"manager": _always, "editor": _always, "freelancer": _assignee_when_task},
    Action.DELETE_COMMENT: {"manager": _always, "editor": _is_author, "freelancer": _is_author},
}

# Project-bound actions a global manager holds on any project.  Hard delete
# stays admin-only.
for _action in PROJECT_RULES:
    if _action is not Action.DELETE_PROJECT:
        GLOBAL_ALLOW.setdefault(_action, "manager")

# Step 4: what a linked client may do without a membership row.
CLIENT_RULES: dict[Action, object] = {
    Action.VIEW_PROJECT: _always,
    Action.VIEW_DELIVERIES: _always,
    Action.REVIEW_DELIVERY: _always,
    Action.VIEW_COMMENTS: _not_task,
    Action.CREATE_COMMENT: _not_task,
    Action.DELETE_COMMENT: _own_comment_not_task,
}


# ── Resolver ─────────────────────────────────────────────────────────────────

def can_perform(ctx: RoleContext, action, resource: ResourceRef | None = None) -> Verdict:
    """Evaluate the layered rules for (actor, action, resource).

    Deterministic for a given store state: the only inputs are the
    context (whose lazy fields read the current membership / client
    rows) and the resource reference.
    """
    action = Action(action)

    if ctx.global_role == "admin":
        return Verdict(True, "admin", "admin override")

    minimum = GLOBAL_ALLOW.get(action)
    if minimum is not None and ctx.at_least(minimum):
        return Verdict(True, ctx.global_role, f"global role {ctx.global_role}")

    if action not in PROJECT_RULES:
        return Verdict(False, None, f"requires global role {minimum or 'admin'}")
    if resource is None or resource.project_id is None:
        return Verdict(False, None, "no project context")

    pctx = ctx.for_project(resource.project_id)

    role = pctx.project_role
    if role is not None:
        rule = PROJECT_RULES[action].get(role)
        if rule is not None and rule(pctx, resource):
            return Verdict(True, role, f"project role {role}")
        return Verdict(False, None, f"project role {role} does not allow {action.value}")

    rule = CLIENT_RULES.get(action)
    if rule is not None and pctx.is_client_of_project and rule(pctx, resource):
        return Verdict(True, "client", "client linkage")

    return Verdict(False, None, "no project access")


def authorize(actor, action, resource: ResourceRef | None = None) -> Verdict:
    """``can_perform`` for an actor id or an existing RoleContext."""
    project_id = resource.project_id if resource is not None else None
    if isinstance(actor, RoleContext):
        ctx = actor.for_project(project_id)
    else:
        ctx = resolve(actor, project_id)
    return can_perform(ctx, action, resource)


def require(actor, action, resource: ResourceRef | None = None, message=None) -> Verdict:
    """Enforce the verdict: return it when allowed, raise ForbiddenError otherwise."""
    verdict = authorize(actor, action, resource)
    if not verdict.allowed:
        action_name = Action(action).value
        logger.info(
            "Denied %s on %s/%s: %s", action_name,
            resource.kind if resource else "-", resource.id if resource else "-",
            verdict.reason,
            extra={
                "event_type": "authz_denied",
                "user_id": actor.actor_id if isinstance(actor, RoleContext) else actor,
                "project_id": resource.project_id if resource else None,
            },
        )
        raise ForbiddenError(message or "Access denied", action=action_name)
    return verdict


# ── Polymorphic resource resolver ────────────────────────────────────────────

def resolve_resource(kind: str, resource_id) -> ResourceRef:
    """Map (kind, id) to a ResourceRef, raising NotFoundError if absent."""
    if kind == "project":
        row = db.session.execute(db.select(Project.id).filter_by(id=resource_id)).first()
        if row is None:
            raise NotFoundError("Project", resource_id)
        return ResourceRef.for_project(row.id)

    if kind == "task":
        row = db.session.execute(
            db.select(Task.project_id, Task.assignee_id, Task.reporter_id).filter_by(id=resource_id)
        ).first()
        if row is None:
            raise NotFoundError("Task", resource_id)
        return ResourceRef(
            kind="task", id=resource_id, project_id=row.project_id,
            assignee_id=row.assignee_id, reporter_id=row.reporter_id,
        )

    if kind == "delivery":
        row = db.session.execute(
            db.select(DeliveryJob.project_id, DeliveryJob.uploaded_by).filter_by(id=resource_id)
        ).first()
        if row is None:
            raise NotFoundError("Delivery", resource_id)
        return ResourceRef(
            kind="delivery", id=resource_id, project_id=row.project_id, uploader_id=row.uploaded_by,
        )

    if kind == "comment":
        row = db.session.execute(
            db.select(Comment.project_id, Comment.user_id, Comment.entity_type).filter_by(id=resource_id)
        ).first()
        if row is None:
            raise NotFoundError("Comment", resource_id)
        return ResourceRef(
            kind="comment", id=resource_id, project_id=row.project_id,
            author_id=row.user_id, target_kind=row.entity_type,
        )

    raise ValidationError(f"Unknown resource kind '{kind}'")


def resolve_comment_target(entity_type: str, entity_id) -> ResourceRef:
    """Validate a comment target tag and resolve it."""
    if entity_type not in COMMENT_ENTITY_TYPES:
        raise ValidationError(
            f"Invalid entity_type. Must be one of: {', '.join(COMMENT_ENTITY_TYPES)}.",
            details={"entity_type": "invalid"},
        )
    try:
        entity_id = int(entity_id)
    except (TypeError, ValueError):
        raise ValidationError("entity_id must be an integer", details={"entity_id": "invalid"}) from None
    return resolve_resource(entity_type, entity_id)
