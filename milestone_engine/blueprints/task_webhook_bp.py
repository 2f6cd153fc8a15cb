"""
Milestone Progress Engine
Task Webhook Blueprint.

Receives row-change events for the ``tasks`` table from the database's
change feed and triggers a milestone recompute when a change can move the
milestone's percentage.

    POST /api/v1/webhooks/task-updated
        Authorization: Bearer <TASK_WEBHOOK_SECRET>   (when configured)
        {"type": "INSERT|UPDATE|DELETE", "table": "tasks",
         "record": {...}, "old_record": {...}}

An event is relevant when ``record.milestone_id`` is set and it is an
INSERT or DELETE, or an UPDATE that moved the task to another stage.
Relevant events are handed to the progress dispatcher and the response is
returned without waiting: ``milestone_update_triggered`` is true even if the
recompute later fails.  Lost or failed recomputes are caught up by the
periodic sweep.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from milestone_engine.middleware.trigger_auth import require_trigger_secret
from milestone_engine.services.progress_dispatcher import progress_dispatcher
from milestone_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

task_webhook_bp = Blueprint("task_webhook_bp", __name__, url_prefix="/api/v1")

TASK_TABLE = "tasks"
SUPPORTED_EVENTS = ("INSERT", "UPDATE", "DELETE")
# Fields logged when they change on UPDATE; they never affect progress
SIGNIFICANT_FIELDS = ("title", "assigned_to", "priority", "due_date")


def _stage_of(record: dict):
    return record.get("stage_id")


def is_relevant_event(event_type, record: dict, old_record: dict) -> bool:
    """True when the event can change the linked milestone's progress."""
    if not record.get("milestone_id"):
        return False
    if event_type in ("INSERT", "DELETE"):
        return True
    if event_type == "UPDATE":
        return _stage_of(old_record) != _stage_of(record)
    return False


def _significant_changes(record: dict, old_record: dict) -> list[str]:
    return [f for f in SIGNIFICANT_FIELDS if old_record.get(f) != record.get(f)]


@task_webhook_bp.route("/webhooks/task-updated", methods=["POST"])
@require_trigger_secret("TASK_WEBHOOK_SECRET")
def task_updated():
    """Process a task change event."""
    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        body = {}

    event_type = body.get("type")
    table = body.get("table")
    record = body.get("record") if isinstance(body.get("record"), dict) else {}
    old_record = body.get("old_record") if isinstance(body.get("old_record"), dict) else {}

    if table != TASK_TABLE:
        logger.warning("Invalid webhook table: %s", table, extra={"event_type": event_type})
        return api_error(E.VALIDATION_INVALID, "Invalid table")

    task_id = record.get("id")
    milestone_id = record.get("milestone_id")
    extra = {"event_type": event_type, "task_id": task_id, "milestone_id": milestone_id}
    logger.info("Task webhook received (stage %s -> %s)",
                _stage_of(old_record), _stage_of(record), extra=extra)

    triggered = is_relevant_event(event_type, record, old_record)
    if triggered:
        # The response does not reflect the hand-off result
        progress_dispatcher.dispatch(str(milestone_id),
                                     task_id=str(task_id) if task_id is not None else None)

    if event_type == "UPDATE":
        changes = _significant_changes(record, old_record)
        if changes:
            logger.info("Task updated with significant changes: %s", ", ".join(changes),
                        extra={"task_id": task_id, "project_id": record.get("project_id")})

    return jsonify({
        "success": True,
        "processed": True,
        "type": event_type,
        "task_id": task_id,
        "milestone_update_triggered": triggered,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }), 200


@task_webhook_bp.route("/webhooks/task-updated", methods=["GET"])
def task_webhook_info():
    """Static description of the webhook and its trigger conditions."""
    return jsonify({
        "webhook_info": {
            "name": "task-updated",
            "description": "Processes task updates and triggers milestone progress recalculation",
            "supported_events": list(SUPPORTED_EVENTS),
            "table": TASK_TABLE,
            "triggers_milestone_update": True,
        },
        "configuration": {
            "requires_webhook_secret": bool(current_app.config.get("TASK_WEBHOOK_SECRET")),
            "dispatch_mode": current_app.config.get("PROGRESS_DISPATCH_MODE", "local"),
            "milestone_update_conditions": [
                "Task moved between stages (stage_id changed)",
                "Task created/deleted with milestone_id",
                "Task has milestone_id assigned",
            ],
        },
        "status": "active",
        "last_check": datetime.now(timezone.utc).isoformat(),
    }), 200
