"""
Startup diagnostics: runs once when the Flask app starts.

Checks critical dependencies and logs a summary banner.
"""

import logging
import sys

from flask import Flask

from milestone_engine.models import db

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = f"FAILED ({exc})"
            issues.append(f"Database unreachable: {exc}")

        # ── Trigger secrets ──────────────────────────────────────────
        cron_secret = bool(app.config.get("CRON_SECRET"))
        webhook_secret = bool(app.config.get("TASK_WEBHOOK_SECRET"))
        if not cron_secret:
            issues.append("CRON_SECRET not set, recompute endpoints are open")
        if not webhook_secret:
            issues.append("TASK_WEBHOOK_SECRET not set, task webhook is open")

        dispatch_mode = app.config.get("PROGRESS_DISPATCH_MODE", "local")
        scheduler = "ENABLED" if app.config.get("SCHEDULER_ENABLED") else "DISABLED"

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Milestone Progress Engine : Startup Diagnostics             ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})'[:46]:<46s}║
║  Cron secret : {'configured' if cron_secret else 'NOT SET':<46s}║
║  Webhook key : {'configured' if webhook_secret else 'NOT SET':<46s}║
║  Dispatch    : {dispatch_mode:<46s}║
║  Scheduler   : {scheduler:<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
