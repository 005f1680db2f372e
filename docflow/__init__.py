"""
Docflow Routing & Escalation Engine
Flask application factory.

    from docflow import create_app
    app = create_app()           # APP_ENV or "development"
    app = create_app("testing")
"""

import importlib
import logging
import os
import time

from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine
from sqlalchemy import event as sa_event

from docflow.config import config
from docflow.middleware.diagnostics import run_startup_diagnostics
from docflow.middleware.logging_config import configure_logging
from docflow.middleware.timing import init_request_timing
from docflow.models import db
from docflow.services import realtime

logger = logging.getLogger(__name__)

migrate = Migrate()

_MODEL_MODULES = (
    "directory",
    "document",
    "routing",
    "sequence",
    "escalation",
    "notification",
    "audit",
    "scheduling",
)


@sa_event.listens_for(sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _init_cors(app: Flask) -> None:
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _register_blueprints(app: Flask) -> None:
    from docflow.blueprints.health_bp import health_bp
    from docflow.blueprints.notification_bp import notification_bp
    from docflow.blueprints.routing_bp import routing_bp

    for bp in (health_bp, routing_bp, notification_bp):
        app.register_blueprint(bp)


def _register_cli(app: Flask) -> None:
    @app.cli.command("seed-escalation-policy")
    def seed_escalation_policy_cmd():
        """Create the default four-level escalation policy if missing."""
        from docflow.services.escalation import seed_default_policy

        policy = seed_default_policy()
        logger.info("Escalation policy '%s' ready with %d levels", policy.name, len(policy.levels))

    @app.cli.command("run-scheduler")
    def run_scheduler_cmd():
        """Run escalation scans and SLA reminders in the foreground."""
        from docflow.services.scheduler_service import SchedulerService

        SchedulerService.start()
        try:
            while SchedulerService.is_running():
                time.sleep(1)
        except KeyboardInterrupt:
            SchedulerService.stop()


def _register_app_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled 500: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500


def create_app(config_name=None):
    """
    Build the Flask app for ``config_name`` (development | testing | production).

    Tables are created on startup outside of tests; schema changes still go
    through ``flask db migrate``. The scheduler thread starts only when
    SCHEDULER_ENABLED is set and the app is not under test.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")
    cfg = config[config_name]

    app = Flask(__name__, instance_relative_config=True)
    # ProductionConfig validates its environment on instantiation
    app.config.from_object(cfg() if config_name == "production" else cfg)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    _init_cors(app)
    realtime.init_app(app)
    init_request_timing(app)

    for name in _MODEL_MODULES:
        importlib.import_module(f"docflow.models.{name}")

    if not app.config.get("TESTING"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
            except Exception as exc:
                app.logger.warning("db.create_all() failed: %s", exc)

    _register_blueprints(app)
    _register_cli(app)
    _register_app_error_handlers(app)

    run_startup_diagnostics(app)

    # Importing the jobs module registers its @register_job functions
    importlib.import_module("docflow.services.scheduled_jobs")
    from docflow.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)
    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        SchedulerService.start()

    return app
