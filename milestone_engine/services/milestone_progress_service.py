"""
Milestone Progress Engine
Milestone Progress Service.

Recompute core + batch coordinator.  Every public entry point returns a
:class:`ReconciliationReport`; failures for one milestone are recorded as
strings in ``errors`` and never abort the rest of a batch.

Accounting rules:
    - ``total_processed`` counts milestones that were recomputed and written,
      including writes that left the percentage unchanged.
    - ``updated_milestones`` lists only milestones whose percentage changed.
    - Completed milestones are skipped: no write, not listed, not counted.

Concurrency: two triggers on the same milestone each do an unlocked
read-modify-write; the later write wins.  Recompute only depends on the
current task state, so the next trigger (or the periodic sweep) corrects a
stale value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from milestone_engine.core.exceptions import NotFoundError
from milestone_engine.models import db
from milestone_engine.models.milestone import (
    Milestone,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
)
from milestone_engine.models.task import Task
from milestone_engine.services import progress_calculator

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_LIMIT = 50

# Sentinel returned by recompute() for frozen (completed) milestones
SKIPPED = object()


# ═══════════════════════════════════════════════════════════════════════════
#  Report types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class MilestoneChange:
    milestone_id: str
    old_progress: int
    new_progress: int
    task_count: int
    completed_tasks: int
    updated_at: str

    @property
    def changed(self) -> bool:
        return self.old_progress != self.new_progress

    def to_dict(self) -> dict:
        return {
            "milestone_id": self.milestone_id,
            "old_progress": self.old_progress,
            "new_progress": self.new_progress,
            "task_count": self.task_count,
            "completed_tasks": self.completed_tasks,
            "updated_at": self.updated_at,
        }


@dataclass
class ReconciliationReport:
    success: bool = True
    updated_milestones: list[MilestoneChange] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    total_processed: int = 0

    @classmethod
    def failure(cls, message: str) -> "ReconciliationReport":
        return cls(success=False, errors=[message])

    def merge(self, other: "ReconciliationReport") -> None:
        """Fold a per-milestone sub-report into this aggregate."""
        self.updated_milestones.extend(other.updated_milestones)
        self.errors.extend(other.errors)
        self.total_processed += other.total_processed
        self.success = not self.errors

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "updated_milestones": [m.to_dict() for m in self.updated_milestones],
            "errors": list(self.errors),
            "total_processed": self.total_processed,
            "updated_count": len(self.updated_milestones),
            "error_count": len(self.errors),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  Service
# ═══════════════════════════════════════════════════════════════════════════

def _next_status(current: str, pct: int) -> str:
    if pct == 100:
        return STATUS_COMPLETED
    if pct > 0:
        return STATUS_IN_PROGRESS
    # 0% keeps whatever the milestone had (not_started, on_hold, in_progress)
    return current


class MilestoneProgressService:
    """Stateless service class for milestone progress reconciliation."""

    # ── Recompute core ───────────────────────────────────────────────────

    @staticmethod
    def recompute(milestone_id: str):
        """
        Recompute and persist one milestone's progress.

        Returns:
            MilestoneChange (even when the percentage is unchanged), or
            ``SKIPPED`` for a completed milestone.

        Raises:
            NotFoundError: milestone does not exist.
        """
        milestone = db.session.get(Milestone, milestone_id)
        if milestone is None:
            raise NotFoundError("Milestone", milestone_id)

        if milestone.status == STATUS_COMPLETED:
            logger.debug("Milestone %s is completed, skipping", milestone_id,
                         extra={"milestone_id": milestone_id})
            return SKIPPED

        snapshot = progress_calculator.calculate(milestone_id)
        old_progress = milestone.progress_percentage or 0
        new_progress = snapshot.progress_percentage
        now = datetime.now(timezone.utc)
        # Read before commit; expire-on-commit would reload the row
        name, project_id = milestone.name, milestone.project_id

        milestone.progress_percentage = new_progress
        milestone.status = _next_status(milestone.status, new_progress)
        milestone.updated_at = now
        db.session.commit()

        if old_progress != new_progress:
            logger.info(
                "Updated milestone %s progress: %d%% -> %d%% (%d/%d tasks)",
                name, old_progress, new_progress,
                snapshot.completed_tasks, snapshot.total_tasks,
                extra={"milestone_id": milestone_id, "project_id": project_id},
            )

        return MilestoneChange(
            milestone_id=milestone_id,
            old_progress=old_progress,
            new_progress=new_progress,
            task_count=snapshot.total_tasks,
            completed_tasks=snapshot.completed_tasks,
            updated_at=now.isoformat(),
        )

    # ── Batch coordinator ────────────────────────────────────────────────

    @staticmethod
    def update_milestone_progress(milestone_id: str) -> ReconciliationReport:
        """Recompute one milestone and wrap the outcome in a report."""
        try:
            outcome = MilestoneProgressService.recompute(milestone_id)
        except NotFoundError as exc:
            db.session.rollback()
            return ReconciliationReport.failure(str(exc))
        except Exception as exc:
            db.session.rollback()
            logger.exception("Error updating milestone %s", milestone_id,
                             extra={"milestone_id": milestone_id})
            return ReconciliationReport.failure(f"Error updating milestone {milestone_id}: {exc}")

        if outcome is SKIPPED:
            return ReconciliationReport()

        report = ReconciliationReport(total_processed=1)
        if outcome.changed:
            report.updated_milestones.append(outcome)
        return report

    @staticmethod
    def update_milestones_for_task(task_id: str) -> ReconciliationReport:
        """Recompute the milestone a task is linked to, if any."""
        try:
            task = db.session.get(Task, task_id)
        except Exception as exc:
            db.session.rollback()
            logger.exception("Error loading task %s", task_id, extra={"task_id": task_id})
            return ReconciliationReport.failure(f"Error processing task {task_id}: {exc}")

        if task is None:
            return ReconciliationReport.failure(str(NotFoundError("Task", task_id)))

        if not task.milestone_id:
            return ReconciliationReport()

        return MilestoneProgressService.update_milestone_progress(task.milestone_id)

    @staticmethod
    def update_milestones_for_project(project_id: str) -> ReconciliationReport:
        """Recompute every milestone of a project, sequentially in creation order."""
        try:
            milestone_ids = [
                row.id for row in
                db.session.query(Milestone.id)
                .filter(Milestone.project_id == project_id)
                .order_by(Milestone.created_at.asc(), Milestone.id.asc())
                .all()
            ]
        except Exception as exc:
            db.session.rollback()
            logger.exception("Failed to list milestones for project %s", project_id,
                             extra={"project_id": project_id})
            return ReconciliationReport.failure(
                f"Failed to find milestones for project {project_id}: {exc}"
            )

        report = ReconciliationReport()
        for milestone_id in milestone_ids:
            report.merge(MilestoneProgressService.update_milestone_progress(milestone_id))
        return report

    @staticmethod
    def get_milestones_needing_update(limit: int = DEFAULT_SWEEP_LIMIT) -> list[Milestone]:
        """In-progress milestones, least recently updated first."""
        try:
            return (
                Milestone.query
                .filter(Milestone.status == STATUS_IN_PROGRESS)
                .order_by(Milestone.updated_at.asc(), Milestone.id.asc())
                .limit(limit)
                .all()
            )
        except Exception:
            db.session.rollback()
            logger.exception("Error getting milestones needing update")
            return []

    @staticmethod
    def count_in_progress() -> int:
        return Milestone.query.filter(Milestone.status == STATUS_IN_PROGRESS).count()

    @staticmethod
    def sweep(limit: int = DEFAULT_SWEEP_LIMIT) -> ReconciliationReport:
        """Recompute up to ``limit`` in-progress milestones.

        Each milestone commits on its own, so an interrupted sweep can be
        re-run from scratch.
        """
        milestone_ids = [m.id for m in MilestoneProgressService.get_milestones_needing_update(limit)]
        report = ReconciliationReport()
        for milestone_id in milestone_ids:
            report.merge(MilestoneProgressService.update_milestone_progress(milestone_id))

        logger.info(
            "Milestone sweep: %d candidates, %d processed, %d changed, %d errors",
            len(milestone_ids), report.total_processed,
            len(report.updated_milestones), len(report.errors),
        )
        return report
