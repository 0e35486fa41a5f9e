"""
SOW Workflow Engine

Application factory. Wiring order matters: logging, then extensions,
then request middleware (timing before identity so every response,
including a 401, carries X-Request-ID), then models and blueprints.

Usage:
    from sowflow import create_app
    app = create_app()             # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from sowflow.auth import init_auth
from sowflow.config import config
from sowflow.middleware.logging_config import configure_logging
from sowflow.middleware.timing import init_request_timing
from sowflow.models import db
from sowflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    # SQLite ships with FK checks off; approvals and changelog rows rely on them
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """Build a configured Flask app for ``config_name``
    ("development", "testing" or "production"; default from APP_ENV)."""
    config_name = config_name or os.getenv("APP_ENV", "development")
    config_cls = config[config_name]

    app = Flask(__name__, instance_relative_config=True)
    # ProductionConfig checks its required env vars when instantiated
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    configure_logging(app)
    _init_extensions(app)

    init_request_timing(app)
    init_auth(app)

    from sowflow.models import approval, changelog, comment, notification, sow  # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        # Dev / test databases only; PostgreSQL is managed by `flask db upgrade`
        with app.app_context():
            db.create_all()

    from sowflow.blueprints.sow_bp import sow_bp
    app.register_blueprint(sow_bp)

    _register_cli(app)
    _register_app_routes(app)

    logger.info("SOW workflow engine ready (config=%s)", config_name)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _register_cli(app):
    @app.cli.command("seed-approval-stages")
    def seed_approval_stages_cmd():
        """Create the default approval stages that are missing."""
        from sowflow.services.stage_service import seed_default_stages

        created = seed_default_stages()
        db.session.commit()
        logger.info("Seeded %s new approval stages.", created)


def _register_app_routes(app):
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "SOW Workflow Engine"}

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405,
                         details={"method": request.method, "path": request.path})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
