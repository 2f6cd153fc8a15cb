"""
Milestone Progress Engine
Flask Application Factory.

Usage:
    from milestone_engine import create_app
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

from milestone_engine.config import config
from milestone_engine.models import db
from milestone_engine.middleware.logging_config import configure_logging
from milestone_engine.middleware.timing import init_request_timing
from milestone_engine.middleware.diagnostics import run_startup_diagnostics
from milestone_engine.middleware.rate_limiter import init_rate_limits

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit; applied per blueprint
)


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
    app.config.from_object(config[config_name])
    if config_name != "testing" and "sqlite:///" in str(app.config.get("SQLALCHEMY_DATABASE_URI", "")):
        os.makedirs(os.path.join(os.path.dirname(os.path.dirname(__file__)), "instance"), exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guard (input length) ─────────────────────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from milestone_engine.models import project as _project_models      # noqa: F401
    from milestone_engine.models import task as _task_models            # noqa: F401
    from milestone_engine.models import milestone as _milestone_models  # noqa: F401
    from milestone_engine.models import scheduling as _scheduling_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ──
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from milestone_engine.blueprints.health_bp import health_bp
    from milestone_engine.blueprints.milestone_progress_bp import milestone_progress_bp
    from milestone_engine.blueprints.task_webhook_bp import task_webhook_bp
    from milestone_engine.blueprints.scheduler_bp import scheduler_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(milestone_progress_bp)
    app.register_blueprint(task_webhook_bp)
    app.register_blueprint(scheduler_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("sweep-milestones")
    @click.option("--limit", default=None, type=int, help="Max in-progress milestones to recompute.")
    def sweep_milestones_cmd(limit):
        """Recompute progress for in-progress milestones once and print a summary."""
        from milestone_engine.services.milestone_progress_service import MilestoneProgressService
        report = MilestoneProgressService.sweep(limit or app.config["MILESTONE_SWEEP_LIMIT"])
        click.echo(
            f"processed={report.total_processed} updated={len(report.updated_milestones)} "
            f"errors={len(report.errors)}"
        )
        for err in report.errors:
            click.echo(f"  ! {err}", err=True)

    # ── Health check (detailed version at /health/live) ──
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Milestone Progress Engine"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "detail": str(e)}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def payload_too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Webhook → recompute dispatcher ───────────────────────────────────
    from milestone_engine.services.progress_dispatcher import progress_dispatcher
    progress_dispatcher.init_app(app)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("milestone_engine.services.scheduled_jobs")  # registers @register_job handlers
    from milestone_engine.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)
    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        _SchedulerSvc.start()

    return app
