"""
Admin Blueprint: user administration, platform stats and the audit log.

  GET /api/v1/admin/users             ?role=&search=
  PUT /api/v1/admin/users/<id>/role   { role }
  PUT /api/v1/admin/users/<id>/status { is_active }
  GET /api/v1/admin/stats
  GET /api/v1/admin/audit-log         ?entity_type=&user_id=&action=&project_id=
"""

from flask import Blueprint, g, jsonify, request

from cutroom.blueprints import json_body, paginate_query
from cutroom.core.exceptions import ValidationError
from cutroom.middleware.jwt_auth import role_required
from cutroom.models.audit import AuditLog
from cutroom.services import dashboard_service, user_service

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/v1/admin")


@admin_bp.route("/users", methods=["GET"])
@role_required("admin")
def list_users():
    query = user_service.list_users(role=request.args.get("role"), search=request.args.get("search"))
    items, total = paginate_query(query)
    return jsonify({"items": [u.to_dict() for u in items], "total": total}), 200


@admin_bp.route("/users/<int:user_id>/role", methods=["PUT"])
@role_required("admin")
def change_role(user_id):
    user = user_service.change_global_role(g.current_user_id, user_id, json_body().get("role"))
    return jsonify(user.to_dict()), 200


@admin_bp.route("/users/<int:user_id>/status", methods=["PUT"])
@role_required("admin")
def change_status(user_id):
    data = json_body()
    if not isinstance(data.get("is_active"), bool):
        raise ValidationError("is_active (boolean) is required", details={"is_active": "required"})
    user = user_service.set_active(g.current_user_id, user_id, data["is_active"])
    return jsonify(user.to_dict()), 200


@admin_bp.route("/stats", methods=["GET"])
@role_required("admin")
def stats():
    return jsonify(dashboard_service.platform_stats()), 200


@admin_bp.route("/audit-log", methods=["GET"])
@role_required("admin")
def audit_log():
    q = AuditLog.query
    if request.args.get("entity_type"):
        q = q.filter_by(entity_type=request.args["entity_type"])
    if request.args.get("action"):
        q = q.filter_by(action=request.args["action"])
    user_id = request.args.get("user_id", type=int)
    if user_id:
        q = q.filter_by(user_id=user_id)
    project_id = request.args.get("project_id", type=int)
    if project_id:
        q = q.filter_by(project_id=project_id)
    items, total = paginate_query(q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()))
    return jsonify({"items": [a.to_dict() for a in items], "total": total}), 200
