"""
Task Blueprint: task board.

  GET/POST /api/v1/projects/<project_id>/tasks      ?status=&assignee_id=&priority=&search= or ?view=board
  GET/PUT  /api/v1/tasks/<id>
  PUT      /api/v1/tasks/<id>/position               { status, position }
  DELETE   /api/v1/tasks/<id>
"""

from flask import Blueprint, g, jsonify, request

from cutroom.blueprints import json_body, paginate_query
from cutroom.core.exceptions import ValidationError
from cutroom.middleware.jwt_auth import login_required
from cutroom.services import task_service

task_bp = Blueprint("task_bp", __name__, url_prefix="/api/v1")


@task_bp.route("/projects/<int:project_id>/tasks", methods=["GET"])
@login_required
def list_tasks(project_id):
    if request.args.get("view") == "board":
        return jsonify({"project_id": project_id, "columns": task_service.get_board(g.current_user_id, project_id)}), 200
    query = task_service.list_tasks(
        g.current_user_id, project_id,
        status=request.args.get("status"),
        assignee_id=request.args.get("assignee_id", type=int),
        priority=request.args.get("priority"),
        search=request.args.get("search"),
    )
    items, total = paginate_query(query, default_limit=200, max_limit=1000)
    return jsonify({"items": [t.to_dict() for t in items], "total": total}), 200


@task_bp.route("/projects/<int:project_id>/tasks", methods=["POST"])
@login_required
def create_task(project_id):
    task = task_service.create_task(g.current_user_id, project_id, json_body())
    return jsonify(task.to_dict()), 201


@task_bp.route("/tasks/<int:task_id>", methods=["GET"])
@login_required
def get_task(task_id):
    task = task_service.get_task(g.current_user_id, task_id)
    return jsonify(task.to_dict(include_subtasks=True)), 200


@task_bp.route("/tasks/<int:task_id>", methods=["PUT"])
@login_required
def update_task(task_id):
    task = task_service.update_task(g.current_user_id, task_id, json_body())
    return jsonify(task.to_dict()), 200


@task_bp.route("/tasks/<int:task_id>/position", methods=["PUT"])
@login_required
def move_task(task_id):
    data = json_body()
    if "status" not in data or "position" not in data:
        raise ValidationError("status and position are required", details={"position": "required"})
    task = task_service.move_task(g.current_user_id, task_id, data["status"], data["position"])
    return jsonify(task.to_dict()), 200


@task_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@login_required
def delete_task(task_id):
    task_service.delete_task(g.current_user_id, task_id)
    return jsonify({"message": "Task deleted"}), 200
