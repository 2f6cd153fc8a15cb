"""
Milestone Progress Engine
Milestone Progress Blueprint.

Provides:
    - POST /api/v1/cron/milestone-progress   on-demand recompute / sweep
    - GET  /api/v1/cron/milestone-progress   read-only status for monitoring
    - GET  /api/v1/milestones/<id>/progress  fresh snapshot without writing

The POST body selects the target, first match wins:
    {"milestone_id": ...} | {"task_id": ...} | {"project_id": ...} | {}
An empty or unparseable body runs a sweep over in-progress milestones.
HTTP 200 means the request was handled; callers must inspect ``success``
and ``errors`` in the body for the business outcome.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from milestone_engine.middleware.trigger_auth import require_trigger_secret
from milestone_engine.models import db
from milestone_engine.models.milestone import Milestone
from milestone_engine.services import progress_calculator
from milestone_engine.services.milestone_progress_service import MilestoneProgressService
from milestone_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

milestone_progress_bp = Blueprint("milestone_progress_bp", __name__, url_prefix="/api/v1")

STATUS_PREVIEW_LIMIT = 10


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _target(body: dict, key: str) -> str | None:
    value = body.get(key)
    if value is None or value == "":
        return None
    return str(value)


# ═══════════════════════════════════════════════════════════════════════════
#  RECOMPUTE
# ═══════════════════════════════════════════════════════════════════════════

@milestone_progress_bp.route("/cron/milestone-progress", methods=["POST"])
@require_trigger_secret("CRON_SECRET")
def run_milestone_progress():
    """Recompute milestone progress for one target, or sweep when none given."""
    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        body = {}

    milestone_id = _target(body, "milestone_id")
    task_id = _target(body, "task_id")
    project_id = _target(body, "project_id")

    logger.info("Starting milestone progress update job",
                extra={"milestone_id": milestone_id, "task_id": task_id, "project_id": project_id})

    try:
        if milestone_id:
            report = MilestoneProgressService.update_milestone_progress(milestone_id)
        elif task_id:
            report = MilestoneProgressService.update_milestones_for_task(task_id)
        elif project_id:
            report = MilestoneProgressService.update_milestones_for_project(project_id)
        else:
            limit = int(current_app.config.get("MILESTONE_SWEEP_LIMIT", 50))
            report = MilestoneProgressService.sweep(limit)
    except Exception as exc:
        db.session.rollback()
        logger.exception("Milestone progress update job failed")
        return jsonify({
            "success": False,
            "error": "Internal server error",
            "details": str(exc),
            "timestamp": _now_iso(),
        }), 500

    summary = report.to_dict()
    summary["timestamp"] = _now_iso()
    logger.info("Milestone progress update completed: processed=%d updated=%d errors=%d",
                summary["total_processed"], summary["updated_count"], summary["error_count"])
    return jsonify(summary), 200


# ═══════════════════════════════════════════════════════════════════════════
#  STATUS (read-only)
# ═══════════════════════════════════════════════════════════════════════════

@milestone_progress_bp.route("/cron/milestone-progress", methods=["GET"])
def milestone_progress_status():
    """Report in-progress milestones and the recommended sweep cadence. No writes."""
    interval = int(current_app.config.get("MILESTONE_SWEEP_INTERVAL_MINUTES", 15))
    limit = int(current_app.config.get("MILESTONE_SWEEP_LIMIT", 50))

    try:
        candidates = MilestoneProgressService.get_milestones_needing_update(limit)
        total_in_progress = MilestoneProgressService.count_in_progress()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Error getting milestone progress status")
        return api_error(E.DATABASE, "Internal server error", status=500,
                         details={"reason": str(exc)})

    preview = candidates[:STATUS_PREVIEW_LIMIT]
    return jsonify({
        "cron_job_info": {
            "name": "milestone-progress",
            "description": "Automatically update milestone progress based on task completion",
            "recommended_schedule": f"*/{interval} * * * *",
            "interval_minutes": interval,
            "sweep_limit": limit,
            "last_check": _now_iso(),
        },
        "milestones_in_progress": {
            "count": total_in_progress,
            "milestones": [
                {
                    "id": m.id,
                    "name": m.name,
                    "project_id": m.project_id,
                    "project_name": m.project.name if m.project else None,
                    "current_progress": m.progress_percentage,
                    "status": m.status,
                    "last_updated": m.updated_at.isoformat() if m.updated_at else None,
                }
                for m in preview
            ],
        },
        "next_actions": {
            "would_update": len(candidates),
        },
    }), 200


# ═══════════════════════════════════════════════════════════════════════════
#  SNAPSHOT (read-only)
# ═══════════════════════════════════════════════════════════════════════════

@milestone_progress_bp.route("/milestones/<milestone_id>/progress", methods=["GET"])
def get_milestone_progress(milestone_id):
    """Stored progress next to a freshly computed snapshot; ``drift`` flags a mismatch."""
    milestone = db.session.get(Milestone, milestone_id)
    if not milestone:
        return api_error(E.NOT_FOUND, f"Milestone not found: {milestone_id}")

    snapshot = progress_calculator.calculate(milestone_id)
    return jsonify({
        "milestone": milestone.to_dict(),
        "progress_data": snapshot.to_dict(),
        "drift": (not milestone.is_frozen
                  and milestone.progress_percentage != snapshot.progress_percentage),
    }), 200
