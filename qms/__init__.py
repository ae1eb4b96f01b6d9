"""
QMS Platform
Flask Application Factory.

Usage:
    from qms import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from qms.config import config
from qms.middleware.jwt_auth import init_jwt_middleware
from qms.middleware.logging_config import configure_logging
from qms.middleware.rate_limiter import init_rate_limits
from qms.middleware.security_headers import init_security_headers
from qms.middleware.timing import init_request_timing
from qms.models import db

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
    default_limits=[],                     # no global limit, apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _register_blueprints(app):
    from qms.blueprints.admin_bp import admin_bp
    from qms.blueprints.audit_log_bp import audit_log_bp
    from qms.blueprints.audits_bp import audits_bp
    from qms.blueprints.auth_bp import auth_bp
    from qms.blueprints.capa_bp import capa_bp
    from qms.blueprints.data_import_bp import data_import_bp
    from qms.blueprints.evidence_pack_bp import evidence_pack_bp
    from qms.blueprints.export_bp import export_bp
    from qms.blueprints.health_bp import health_bp
    from qms.blueprints.improvement_bp import improvement_bp
    from qms.blueprints.ncr_bp import ncr_bp
    from qms.blueprints.organization_bp import organization_bp
    from qms.blueprints.system_bp import system_bp
    from qms.blueprints.users_bp import users_bp

    for bp in (
        health_bp, auth_bp, users_bp, organization_bp, improvement_bp,
        audits_bp, ncr_bp, capa_bp, admin_bp, data_import_bp, export_bp,
        audit_log_bp, evidence_pack_bp, system_bp,
    ):
        app.register_blueprint(bp)


def _register_cli(app):
    @app.cli.command("seed-roles")
    def seed_roles_cmd():
        """Create the built-in roles (superuser, admin, manager, auditor, user, viewer)."""
        from qms.services.user_service import seed_roles
        count = seed_roles()
        db.session.commit()
        click.echo(f"Seeded {count} roles.")

    @app.cli.command("create-superuser")
    @click.argument("email")
    @click.argument("password")
    def create_superuser_cmd(email, password):
        """Create a superuser account (roles are seeded first)."""
        from qms.services.user_service import create_user, seed_roles, set_user_roles
        seed_roles()
        user = create_user({"email": email, "password": password, "firstName": "System",
                            "lastName": "Administrator"})
        set_user_roles(user.id, ["superuser"], None, audit=False)
        db.session.commit()
        click.echo(f"Superuser {user.email} created (id={user.id}).")


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Import all models so Alembic and create_all see them ─────────────
    from qms.models import admin as _admin_models              # noqa: F401
    from qms.models import audit_log as _audit_log_models      # noqa: F401
    from qms.models import auth as _auth_models                # noqa: F401
    from qms.models import capa as _capa_models                # noqa: F401
    from qms.models import improvement as _improvement_models  # noqa: F401
    from qms.models import internal_audit as _audit_models     # noqa: F401
    from qms.models import ncr as _ncr_models                  # noqa: F401
    from qms.models import organization as _org_models         # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
