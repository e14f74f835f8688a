"""
Project Blueprint: projects, members and stats.

  GET/POST    /api/v1/projects
  GET/PUT/DEL /api/v1/projects/<id>
  POST        /api/v1/projects/<id>/archive
  GET/POST    /api/v1/projects/<id>/members
  DELETE      /api/v1/projects/<id>/members/<user_id>
  GET         /api/v1/projects/<id>/stats
"""

from flask import Blueprint, g, jsonify, request

from cutroom.blueprints import arg_bool, json_body, paginate_query
from cutroom.middleware.jwt_auth import login_required
from cutroom.services import project_service

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1/projects")


@project_bp.route("", methods=["GET"])
@login_required
def list_projects():
    q = request.args.get("q")
    if q:
        query = project_service.search_projects(g.current_user_id, q)
    else:
        query = project_service.list_projects(
            g.current_user_id,
            status=request.args.get("status"),
            include_archived=arg_bool("include_archived"),
        )
    items, total = paginate_query(query)
    return jsonify({"items": [p.to_dict() for p in items], "total": total}), 200


@project_bp.route("", methods=["POST"])
@login_required
def create_project():
    project = project_service.create_project(g.current_user_id, json_body())
    return jsonify(project.to_dict(include_members=True)), 201


@project_bp.route("/<int:project_id>", methods=["GET"])
@login_required
def get_project(project_id):
    project = project_service.get_project(g.current_user_id, project_id)
    return jsonify(project.to_dict(include_members=True)), 200


@project_bp.route("/<int:project_id>", methods=["PUT"])
@login_required
def update_project(project_id):
    project = project_service.update_project(g.current_user_id, project_id, json_body())
    return jsonify(project.to_dict()), 200


@project_bp.route("/<int:project_id>/archive", methods=["POST"])
@login_required
def archive_project(project_id):
    project = project_service.archive_project(g.current_user_id, project_id)
    return jsonify(project.to_dict()), 200


@project_bp.route("/<int:project_id>", methods=["DELETE"])
@login_required
def delete_project(project_id):
    project_service.delete_project(g.current_user_id, project_id)
    return jsonify({"message": "Project deleted"}), 200


# ── Members ──────────────────────────────────────────────────────────────────

@project_bp.route("/<int:project_id>/members", methods=["GET"])
@login_required
def list_members(project_id):
    members = project_service.list_members(g.current_user_id, project_id)
    return jsonify({"items": [m.to_dict() for m in members], "total": len(members)}), 200


@project_bp.route("/<int:project_id>/members", methods=["POST"])
@login_required
def add_member(project_id):
    """Body: { "user_id": 5 } or { "email": "..." }, plus "role"."""
    member, created = project_service.add_member(g.current_user_id, project_id, json_body())
    return jsonify(member.to_dict()), 201 if created else 200


@project_bp.route("/<int:project_id>/members/<int:user_id>", methods=["DELETE"])
@login_required
def remove_member(project_id, user_id):
    project_service.remove_member(g.current_user_id, project_id, user_id)
    return jsonify({"message": "Member removed"}), 200


@project_bp.route("/<int:project_id>/stats", methods=["GET"])
@login_required
def project_stats(project_id):
    return jsonify(project_service.project_stats(g.current_user_id, project_id)), 200
