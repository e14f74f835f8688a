"""
Live Blueprint: Server-Sent Events stream and project channel membership.

  GET    /api/v1/live/stream                                 (Bearer or ?token=)
  POST   /api/v1/live/<connection_id>/projects/<project_id>  join
  DELETE /api/v1/live/<connection_id>/projects/<project_id>  leave

The stream opens a connection in the channel registry, joins the caller's
user room and every project they can see, and then relays queued events.
The connection id comes back in the ``X-Connection-ID`` header and in the
first ``connected`` event.

Task and task-comment events go to a separate team room that only
viewers allowed to see tasks join.
"""

import json
import logging

from flask import Blueprint, Response, g, jsonify

from cutroom.core.exceptions import NotFoundError
from cutroom.middleware.jwt_auth import login_required
from cutroom.models import db
from cutroom.models.project import Project
from cutroom.services.live_channels import get_registry
from cutroom.services.permission_service import Action, ResourceRef, authorize, require, resolve_resource
from cutroom.services.project_service import visible_project_ids

logger = logging.getLogger(__name__)

live_bp = Blueprint("live_bp", __name__, url_prefix="/api/v1/live")

KEEPALIVE_SECONDS = 15


def _sse(event, data):
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


@live_bp.route("/stream", methods=["GET"])
@login_required
def stream():
    registry = get_registry()
    user_id = g.current_user_id
    connection_id = registry.connect(user_id)

    project_ids = visible_project_ids(user_id)
    if project_ids is None:
        project_ids = db.session.execute(
            db.select(Project.id).where(Project.status != "archived")
        ).scalars().all()
    for project_id in project_ids:
        registry.join_project_channel(connection_id, project_id, team=_sees_tasks(user_id, project_id))

    def _events():
        yield _sse("connected", {"connection_id": connection_id, "projects": list(project_ids)})
        while True:
            evt = registry.listen(connection_id, timeout=KEEPALIVE_SECONDS)
            if evt is None:
                if registry.owner_of(connection_id) is None:
                    return
                yield ": keepalive\n\n"
                continue
            yield _sse(evt.name, {"room": evt.room, "data": evt.data, "ts": evt.ts})

    response = Response(_events(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.headers["X-Connection-ID"] = connection_id
    response.call_on_close(lambda: registry.disconnect(connection_id))
    logger.debug("Live stream opened %s", connection_id, extra={"user_id": user_id})
    return response


def _sees_tasks(user_id, project_id):
    return authorize(user_id, Action.VIEW_TASKS, ResourceRef.for_project(project_id)).allowed


def _own_connection(connection_id):
    registry = get_registry()
    if registry.owner_of(connection_id) != g.current_user_id:
        raise NotFoundError("Connection", connection_id)
    return registry


@live_bp.route("/<connection_id>/projects/<int:project_id>", methods=["POST"])
@login_required
def join_project(connection_id, project_id):
    registry = _own_connection(connection_id)
    require(g.current_user_id, Action.VIEW_PROJECT, resolve_resource("project", project_id))
    registry.join_project_channel(
        connection_id, project_id, team=_sees_tasks(g.current_user_id, project_id),
    )
    return jsonify({"connection_id": connection_id, "rooms": sorted(registry.rooms_for(connection_id))}), 200


@live_bp.route("/<connection_id>/projects/<int:project_id>", methods=["DELETE"])
@login_required
def leave_project(connection_id, project_id):
    registry = _own_connection(connection_id)
    registry.leave_project_channel(connection_id, project_id)
    return jsonify({"connection_id": connection_id, "rooms": sorted(registry.rooms_for(connection_id))}), 200
