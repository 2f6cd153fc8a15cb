"""
Milestone Progress Engine
Scheduler Service.

Lightweight background job scheduler.  Job functions register themselves
with :func:`register_job`; each has a persisted ``ScheduledJob`` row holding
its interval and run history.  When ``SCHEDULER_ENABLED`` is set, a daemon
thread wakes every ``SCHEDULER_TICK_SECONDS`` and runs the jobs whose
interval has elapsed.  Jobs can also be triggered manually via the API.

Architecture:
    - SchedulerService: job registration, persistence, execution, tick loop
    - Jobs are executed within a Flask app context
    - Pluggable job functions registered via decorator
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable

from flask import Flask

from milestone_engine.models import db
from milestone_engine.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("milestone_progress_sweep")
        def sweep_milestones(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(get_registered_jobs()))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, _fn in get_registered_jobs().items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    job = ScheduledJob(
                        job_name=name,
                        description=(_fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_type="interval",
                        schedule_config=_get_default_schedule(cls._app, name),
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = get_registered_jobs().get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)

        # Update DB record
        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in get_registered_jobs():
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        """Get status of a specific job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record:
            return job_record.to_dict()
        return None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()

    # ── Background loop ──────────────────────────────────────────────────

    @classmethod
    def due_jobs(cls, now: datetime | None = None) -> list[str]:
        """Names of registered, enabled jobs whose interval has elapsed."""
        now = now or datetime.now(timezone.utc)
        with cls._app.app_context():
            registered = get_registered_jobs()
            records = ScheduledJob.query.filter_by(is_enabled=True).all()
            return [r.job_name for r in records
                    if r.job_name in registered and r.is_due(now)]

    @classmethod
    def tick(cls, now: datetime | None = None) -> list[dict]:
        """Run every due job once. Returns the run results."""
        if not cls._app:
            return []
        results = []
        for name in cls.due_jobs(now):
            logger.info("Scheduler tick: running %s", name)
            results.append(cls.run_job(name))
        return results

    @classmethod
    def start(cls) -> bool:
        """Start the daemon tick thread. Returns False if already running."""
        if not cls._app:
            raise RuntimeError("SchedulerService.init_app() must be called first")
        if cls._thread is not None and cls._thread.is_alive():
            return False

        cls.ensure_jobs_registered()
        cls._stop_event = threading.Event()
        tick_seconds = int(cls._app.config.get("SCHEDULER_TICK_SECONDS", 30))

        def _loop(stop_event: threading.Event):
            while not stop_event.is_set():
                try:
                    cls.tick()
                except Exception:
                    logger.exception("Scheduler tick failed")
                stop_event.wait(tick_seconds)

        cls._thread = threading.Thread(
            target=_loop, args=(cls._stop_event,),
            name="scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler started (tick=%ss)", tick_seconds)
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop_event is not None:
            cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._thread = None
        cls._stop_event = None

    @classmethod
    def is_running(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()


def _get_default_schedule(app: Flask, job_name: str) -> dict:
    """Return default schedule config for known job types."""
    sweep_minutes = int(app.config.get("MILESTONE_SWEEP_INTERVAL_MINUTES", 15))
    defaults = {
        "milestone_progress_sweep": {
            "interval_minutes": sweep_minutes,
            "cron": f"*/{sweep_minutes} * * * *",
            "description": f"Every {sweep_minutes} minutes",
        },
    }
    return defaults.get(job_name, {"interval_minutes": 60, "description": "Hourly"})
