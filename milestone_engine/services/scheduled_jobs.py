"""
Milestone Progress Engine
Scheduled Jobs.

Jobs:
    - milestone_progress_sweep: periodic recompute of in-progress milestones,
      compensating for webhook events that were lost or failed downstream
"""

from __future__ import annotations

import logging
from typing import Any

from milestone_engine.services.milestone_progress_service import MilestoneProgressService
from milestone_engine.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("milestone_progress_sweep")
def sweep_milestone_progress(app) -> dict[str, Any]:
    """Recompute progress for milestones currently in progress."""
    limit = int(app.config.get("MILESTONE_SWEEP_LIMIT", 50))
    report = MilestoneProgressService.sweep(limit)
    result = report.to_dict()
    if report.errors:
        logger.warning("Milestone sweep finished with %d errors", len(report.errors))
    return result
