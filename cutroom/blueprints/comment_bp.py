"""
Comment Blueprint.

  GET    /api/v1/comments?entity_type=&entity_id=
  POST   /api/v1/comments          { entity_type, entity_id, content }
  DELETE /api/v1/comments/<id>
"""

from flask import Blueprint, g, jsonify, request

from cutroom.blueprints import json_body, paginate_query
from cutroom.middleware.jwt_auth import login_required
from cutroom.services import comment_service

comment_bp = Blueprint("comment_bp", __name__, url_prefix="/api/v1/comments")


@comment_bp.route("", methods=["GET"])
@login_required
def list_comments():
    query = comment_service.list_comments(
        g.current_user_id, request.args.get("entity_type"), request.args.get("entity_id"),
    )
    items, total = paginate_query(query, default_limit=200, max_limit=1000)
    return jsonify({"items": [c.to_dict() for c in items], "total": total}), 200


@comment_bp.route("", methods=["POST"])
@login_required
def create_comment():
    data = json_body()
    comment = comment_service.create_comment(
        g.current_user_id, data.get("entity_type"), data.get("entity_id"), data.get("content"),
    )
    return jsonify(comment.to_dict()), 201


@comment_bp.route("/<int:comment_id>", methods=["DELETE"])
@login_required
def delete_comment(comment_id):
    comment_service.delete_comment(g.current_user_id, comment_id)
    return jsonify({"message": "Comment deleted"}), 200
