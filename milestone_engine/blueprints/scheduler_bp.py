"""
Milestone Progress Engine
Scheduler Blueprint.

Scheduled job management (list, status, trigger, toggle).  All routes sit
behind the cron secret because a trigger runs a full sweep.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from milestone_engine.middleware.trigger_auth import require_trigger_secret
from milestone_engine.services.scheduler_service import SchedulerService
from milestone_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler_bp", __name__, url_prefix="/api/v1/scheduler")


@scheduler_bp.route("/jobs", methods=["GET"])
@require_trigger_secret("CRON_SECRET")
def list_scheduled_jobs():
    """List registered jobs with their persisted run history."""
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({
        "jobs": jobs,
        "total": len(jobs),
        "running": SchedulerService.is_running(),
    })


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
@require_trigger_secret("CRON_SECRET")
def get_job_status(job_name):
    """Get status of a specific scheduled job."""
    status = SchedulerService.get_job_status(job_name)
    if not status:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(status)


@scheduler_bp.route("/jobs/<job_name>/trigger", methods=["POST"])
@require_trigger_secret("CRON_SECRET")
def trigger_job(job_name):
    """Manually trigger a scheduled job."""
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.run_job(job_name)
    if result.get("status") == "error" and "Unknown job" in result.get("error", ""):
        return jsonify(result), 404
    return jsonify(result)


@scheduler_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
@require_trigger_secret("CRON_SECRET")
def toggle_job_status(job_name):
    """Enable or disable a scheduled job."""
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")

    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if not result:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")

    logger.info("Scheduled job %s %s", job_name, "enabled" if enabled else "paused")
    return jsonify(result)
