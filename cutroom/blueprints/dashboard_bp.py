"""
Dashboard Blueprint: role-aware home screen.

  GET /api/v1/dashboard
"""

from flask import Blueprint, g, jsonify

from cutroom.middleware.jwt_auth import login_required
from cutroom.services import dashboard_service

dashboard_bp = Blueprint("dashboard_bp", __name__, url_prefix="/api/v1/dashboard")


@dashboard_bp.route("", methods=["GET"])
@login_required
def dashboard():
    return jsonify(dashboard_service.get_dashboard(g.current_user_id)), 200
