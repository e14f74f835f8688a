"""
Cutroom Collaboration Platform
Flask Application Factory.

Usage:
    from cutroom import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from cutroom.config import config
from cutroom.middleware.jwt_auth import init_jwt_middleware
from cutroom.middleware.logging_config import configure_logging
from cutroom.middleware.rate_limiter import init_rate_limits
from cutroom.middleware.security_headers import init_security_headers
from cutroom.middleware.timing import init_request_timing
from cutroom.models import db

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections.

    Also hands transaction control to SQLAlchemy: pysqlite's own implicit
    BEGIN breaks SAVEPOINT, which the audit writes depend on.
    """
    if "sqlite" in type(dbapi_conn).__module__:
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()
limiter = Limiter(key_func=get_remote_address, default_limits=[])  # per-blueprint limits only


def _register_request_guard(app):
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.content_length and "json" not in ct and "multipart/form-data" not in ct:
                abort(415, description="Content-Type must be application/json or multipart/form-data")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    redis_url = app.config.get("REDIS_URL") or "memory://"
    app.config.setdefault("RATELIMIT_STORAGE_URI", redis_url)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)
    _register_request_guard(app)

    # ── Collaborators: live channels + blob store ────────────────────────
    from cutroom.services.file_storage import init_blob_store
    from cutroom.services.live_channels import init_live_channels
    init_live_channels(app)
    init_blob_store(app)

    # ── Import all models so Alembic / create_all see them ───────────────
    from cutroom.models import audit as _audit_models  # noqa: F401
    from cutroom.models import auth as _auth_models  # noqa: F401
    from cutroom.models import comment as _comment_models  # noqa: F401
    from cutroom.models import delivery as _delivery_models  # noqa: F401
    from cutroom.models import notification as _notification_models  # noqa: F401
    from cutroom.models import project as _project_models  # noqa: F401
    from cutroom.models import task as _task_models  # noqa: F401

    with app.app_context():
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from cutroom.blueprints.admin_bp import admin_bp
    from cutroom.blueprints.auth_bp import auth_bp
    from cutroom.blueprints.client_bp import client_bp
    from cutroom.blueprints.comment_bp import comment_bp
    from cutroom.blueprints.dashboard_bp import dashboard_bp
    from cutroom.blueprints.delivery_bp import delivery_bp
    from cutroom.blueprints.errors import register_error_handlers
    from cutroom.blueprints.health_bp import health_bp
    from cutroom.blueprints.live_bp import live_bp
    from cutroom.blueprints.notification_bp import notification_bp
    from cutroom.blueprints.project_bp import project_bp
    from cutroom.blueprints.task_bp import task_bp

    for bp in (
        health_bp, auth_bp, project_bp, client_bp, task_bp, delivery_bp,
        comment_bp, notification_bp, dashboard_bp, admin_bp, live_bp,
    ):
        app.register_blueprint(bp)

    register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    logger.debug("App created with config %s", config_name)
    return app
