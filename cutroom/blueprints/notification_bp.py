"""
Notification Blueprint: the caller's own inbox.

  GET /api/v1/notifications                 ?unread_only=&limit=&offset=
  GET /api/v1/notifications/unread-count
  PUT /api/v1/notifications/<id>/read
  PUT /api/v1/notifications/read-all
"""

from flask import Blueprint, g, jsonify, request

from cutroom.blueprints import arg_bool
from cutroom.middleware.jwt_auth import login_required
from cutroom.services.notification import NotificationService

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")


@notification_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    limit = min(max(request.args.get("limit", 50, type=int), 0), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_user(
        g.current_user_id, unread_only=arg_bool("unread_only"), limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.current_user_id),
    }), 200


@notification_bp.route("/unread-count", methods=["GET"])
@login_required
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.current_user_id)}), 200


@notification_bp.route("/<int:notification_id>/read", methods=["PUT"])
@login_required
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, g.current_user_id)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/read-all", methods=["PUT"])
@login_required
def mark_all_read():
    count = NotificationService.mark_all_read(g.current_user_id)
    return jsonify({"marked_read": count}), 200
