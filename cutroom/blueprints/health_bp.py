"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        - simple 200 for load balancers
    GET /api/v1/health/live   - database and live-channel status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from cutroom.models import db
from cutroom.services.live_channels import get_registry

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "app": "cutroom"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except SQLAlchemyError:
        db.session.rollback()
        checks["database"] = {"status": "error"}
        overall = False
        logger.error("Health check: database failed", exc_info=True)

    redis_url = current_app.config.get("REDIS_URL") or "memory://"
    checks["live_channels"] = {
        "status": "ok",
        "backend": "memory" if redis_url.startswith("memory://") else "redis",
        "connections": get_registry().connection_count(),
    }

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
