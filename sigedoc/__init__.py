"""
SIGEDOC
Flask Application Factory.

Usage:
    from sigedoc import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, g, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from sigedoc.config import config
from sigedoc.core.exceptions import PermissionDenied, WorkflowError
from sigedoc.middleware.jwt_auth import init_jwt_middleware
from sigedoc.middleware.logging_config import configure_logging
from sigedoc.middleware.rate_limiter import init_rate_limits
from sigedoc.middleware.timing import init_request_timing
from sigedoc.models import db
from sigedoc.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    default_limits=[],                     # no global limit; limits are per-blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def _record_access_denied(exc: PermissionDenied) -> None:
    """Append a security.access_denied entry for the refused request."""
    from sigedoc.models.audit import write_audit

    identity = getattr(g, "identity", None)
    try:
        write_audit(
            entity_type="security",
            entity_id=identity.user_id if identity else 0,
            action="security.access_denied",
            actor=identity.label if identity else "anonymous",
            actor_user_id=identity.user_id if identity else None,
            diff={
                "action": exc.action,
                "required": exc.required,
                "reason": exc.reason,
                "method": request.method,
                "path": request.path,
                "ip": request.remote_addr,
            },
        )
        db.session.commit()
    except SQLAlchemyError:
        # The 403 still goes out; only the trail entry is lost
        db.session.rollback()
        logger.exception("Could not record access denial for %s", request.path)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides:   Optional mapping applied on top of the config class
                     (e.g. a file-backed SQLite URI for concurrency tests).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)
    if overrides:
        app.config.update(overrides)

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

    # ── Request timing + JWT identity ────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so create_all / Alembic can see them ───────────
    from sigedoc.models import area as _area_models                  # noqa: F401
    from sigedoc.models import auth as _auth_models                  # noqa: F401
    from sigedoc.models import document as _document_models          # noqa: F401
    from sigedoc.models import audit as _audit_models                # noqa: F401
    from sigedoc.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "testing":
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from sigedoc.blueprints.audit_bp import audit_bp
    from sigedoc.blueprints.auth_bp import auth_bp
    from sigedoc.blueprints.documents_bp import documents_bp
    from sigedoc.blueprints.mesa_partes_bp import mesa_partes_bp
    from sigedoc.blueprints.admin_bp import areas_bp, roles_bp, users_bp
    from sigedoc.blueprints.notification_bp import notification_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(mesa_partes_bp)
    app.register_blueprint(areas_bp)
    app.register_blueprint(roles_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(audit_bp)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "SIGEDOC"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(WorkflowError)
    def workflow_error(exc):
        db.session.rollback()
        if isinstance(exc, PermissionDenied):
            _record_access_denied(exc)
        return api_error(exc.code, exc.message, status=exc.status, details=exc.details)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, e.description, status=415)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
