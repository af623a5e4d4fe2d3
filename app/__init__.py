"""
Agency Compliance Portal
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from app.auth import init_auth
from app.config import config
from app.middleware.jwt_auth import init_jwt_middleware
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing
from app.models import db

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

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

    # ── Collection Manager session store (node-local) ────────────────────
    from app.services.cm_session_store import CMSessionStore
    app.extensions["cm_sessions"] = CMSessionStore(
        timeout_minutes=app.config["CM_SESSION_TIMEOUT_MINUTES"],
        use_timers=app.config.get("CM_SESSION_CLEANUP_TIMERS", True),
    )

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_auth(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import approval as _approval_models          # noqa: F401
    from app.models import audit as _audit_models                # noqa: F401
    from app.models import auth as _auth_models                  # noqa: F401
    from app.models import forms as _forms_models                # noqa: F401
    from app.models import notification as _notification_models  # noqa: F401

    if app.config.get("AUTO_CREATE_TABLES"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.activity_bp import activity_bp
    from app.blueprints.approval_bp import approval_bp
    from app.blueprints.cm_session_bp import cm_session_bp
    from app.blueprints.forms_bp import forms_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.notification_bp import notification_bp

    app.register_blueprint(forms_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(cm_session_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
