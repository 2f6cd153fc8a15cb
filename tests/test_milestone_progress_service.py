"""
Milestone Progress Engine
Tests: Milestone Progress Service.

Covers:
    1. recompute(): status transitions, skip of completed milestones
    2. update_milestone_progress(): report accounting
    3. update_milestones_for_task(): task resolution
    4. update_milestones_for_project(): ordering + aggregation
    5. sweep() / get_milestones_needing_update()
    6. Store failures
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import event

from milestone_engine.core.exceptions import NotFoundError
from milestone_engine.models import db
from milestone_engine.models.milestone import Milestone
from milestone_engine.services.milestone_progress_service import (
    SKIPPED,
    MilestoneProgressService,
    ReconciliationReport,
)


def _reload(milestone_id):
    db.session.expire_all()
    return db.session.get(Milestone, milestone_id)


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 1: recompute()
# ═══════════════════════════════════════════════════════════════════════════

class TestRecompute:

    def test_three_of_four_done(self, board, make_milestone, make_task):
        m = make_milestone(progress=20)
        for _ in range(3):
            make_task(m, board["done"])
        make_task(m, board["doing"])

        change = MilestoneProgressService.recompute(m.id)

        assert change.old_progress == 20
        assert change.new_progress == 75
        assert change.task_count == 4
        assert change.completed_tasks == 3
        assert change.changed
        m = _reload(m.id)
        assert m.progress_percentage == 75
        assert m.status == "in_progress"

    def test_all_done_completes_milestone(self, board, make_milestone, make_task):
        m = make_milestone(status="in_progress", progress=50)
        make_task(m, board["done"])
        make_task(m, board["done"])

        change = MilestoneProgressService.recompute(m.id)
        assert change.new_progress == 100
        assert _reload(m.id).status == "completed"

    def test_completed_milestone_is_skipped(self, board, make_milestone, make_task):
        m = make_milestone(status="completed", progress=100)
        make_task(m, board["todo"])
        before = m.updated_at

        assert MilestoneProgressService.recompute(m.id) is SKIPPED

        m = _reload(m.id)
        assert m.status == "completed"
        assert m.progress_percentage == 100
        assert m.updated_at == before

    def test_zero_percent_preserves_on_hold(self, board, make_milestone, make_task):
        m = make_milestone(status="on_hold")
        make_task(m, board["todo"])

        change = MilestoneProgressService.recompute(m.id)
        assert change.new_progress == 0
        assert _reload(m.id).status == "on_hold"

    def test_zero_percent_keeps_in_progress(self, board, make_milestone, make_task):
        # Task moved back out of Done: percentage drops, status is not reset
        m = make_milestone(status="in_progress", progress=100)
        make_task(m, board["todo"])

        change = MilestoneProgressService.recompute(m.id)
        assert change.old_progress == 100
        assert change.new_progress == 0
        assert _reload(m.id).status == "in_progress"

    def test_no_tasks_is_processed_not_skipped(self, make_milestone):
        m = make_milestone(status="not_started")

        change = MilestoneProgressService.recompute(m.id)
        assert change is not SKIPPED
        assert change.new_progress == 0
        assert change.task_count == 0
        assert _reload(m.id).status == "not_started"

    def test_updated_at_refreshed_on_noop(self, make_milestone):
        old = datetime(2020, 1, 1, tzinfo=timezone.utc)
        m = make_milestone(updated_at=old)

        change = MilestoneProgressService.recompute(m.id)
        assert not change.changed
        assert _reload(m.id).updated_at.replace(tzinfo=timezone.utc) > old

    def test_one_read_one_aggregate_one_write(self, board, make_milestone, make_task):
        m = make_milestone()
        make_task(m, board["done"])
        make_task(m, board["todo"])
        milestone_id = m.id
        statements = []

        def _record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement.split(None, 1)[0].upper())

        event.listen(db.engine, "before_cursor_execute", _record)
        try:
            change = MilestoneProgressService.recompute(milestone_id)
        finally:
            event.remove(db.engine, "before_cursor_execute", _record)

        assert change.changed
        assert statements == ["SELECT", "SELECT", "UPDATE"]

    def test_not_found_raises(self):
        with pytest.raises(NotFoundError) as exc_info:
            MilestoneProgressService.recompute("missing-id")
        assert str(exc_info.value) == "Milestone not found: missing-id"


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 2: update_milestone_progress()
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdateMilestoneProgress:

    def test_change_is_reported(self, board, make_milestone, make_task):
        m = make_milestone()
        make_task(m, board["done"])
        make_task(m, board["todo"])

        report = MilestoneProgressService.update_milestone_progress(m.id)
        assert report.success is True
        assert report.total_processed == 1
        assert [c.milestone_id for c in report.updated_milestones] == [m.id]
        assert report.updated_milestones[0].new_progress == 50
        assert report.errors == []

    def test_idempotent_second_call(self, board, make_milestone, make_task):
        m = make_milestone()
        make_task(m, board["done"])
        make_task(m, board["todo"])

        first = MilestoneProgressService.update_milestone_progress(m.id)
        second = MilestoneProgressService.update_milestone_progress(m.id)

        assert len(first.updated_milestones) == 1
        assert first.updated_milestones[0].new_progress == 50
        assert second.success is True
        assert second.total_processed == 1
        assert second.updated_milestones == []

        change = MilestoneProgressService.recompute(m.id)
        assert change.old_progress == change.new_progress == 50
        assert _reload(m.id).status == "in_progress"

    def test_skipped_report_is_all_zero(self, make_milestone):
        m = make_milestone(status="completed", progress=100)

        report = MilestoneProgressService.update_milestone_progress(m.id)
        assert report.success is True
        assert report.total_processed == 0
        assert report.updated_milestones == []
        assert report.errors == []

    def test_zero_tasks_counts_as_processed(self, make_milestone):
        report = MilestoneProgressService.update_milestone_progress(make_milestone().id)
        assert report.total_processed == 1
        assert report.updated_milestones == []

    def test_not_found_is_report_error(self):
        report = MilestoneProgressService.update_milestone_progress("nope")
        assert report.success is False
        assert report.errors == ["Milestone not found: nope"]
        assert report.total_processed == 0
        assert report.updated_milestones == []

    def test_store_failure_is_report_error(self, make_milestone):
        m = make_milestone()
        with patch(
            "milestone_engine.services.progress_calculator.calculate",
            side_effect=RuntimeError("connection reset"),
        ):
            report = MilestoneProgressService.update_milestone_progress(m.id)

        assert report.success is False
        assert len(report.errors) == 1
        assert report.errors[0].startswith(f"Error updating milestone {m.id}")
        assert "connection reset" in report.errors[0]

    def test_to_dict_has_counts(self, board, make_milestone, make_task):
        m = make_milestone()
        make_task(m, board["done"])

        data = MilestoneProgressService.update_milestone_progress(m.id).to_dict()
        assert data["success"] is True
        assert data["total_processed"] == 1
        assert data["updated_count"] == 1
        assert data["error_count"] == 0
        change = data["updated_milestones"][0]
        assert change["milestone_id"] == m.id
        assert change["old_progress"] == 0
        assert change["new_progress"] == 100
        assert change["task_count"] == 1
        assert change["completed_tasks"] == 1
        assert change["updated_at"]


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 3: update_milestones_for_task()
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdateForTask:

    def test_delegates_to_linked_milestone(self, board, make_milestone, make_task):
        m = make_milestone()
        t = make_task(m, board["done"])

        report = MilestoneProgressService.update_milestones_for_task(t.id)
        assert report.total_processed == 1
        assert report.updated_milestones[0].milestone_id == m.id

    def test_unlinked_task_is_noop(self, board, make_task):
        t = make_task(None, board["done"])

        report = MilestoneProgressService.update_milestones_for_task(t.id)
        assert report.to_dict()["success"] is True
        assert report.total_processed == 0
        assert report.updated_milestones == []
        assert report.errors == []

    def test_unlinked_task_writes_nothing(self, board, make_milestone, make_task):
        m = make_milestone(progress=10)
        t = make_task(None, board["done"])
        with patch.object(MilestoneProgressService, "update_milestone_progress") as mock_update:
            MilestoneProgressService.update_milestones_for_task(t.id)
        mock_update.assert_not_called()
        assert _reload(m.id).progress_percentage == 10

    def test_missing_task(self):
        report = MilestoneProgressService.update_milestones_for_task("ghost")
        assert report.success is False
        assert report.errors == ["Task not found: ghost"]


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 4: update_milestones_for_project()
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdateForProject:

    def test_two_milestones_both_change(self, board, make_milestone, make_task):
        half = make_milestone(name="Half")
        make_task(half, board["done"])
        make_task(half, board["todo"])
        full = make_milestone(name="Full", status="not_started")
        make_task(full, board["done"])

        report = MilestoneProgressService.update_milestones_for_project(half.project_id)

        assert report.success is True
        assert report.total_processed == 2
        assert len(report.updated_milestones) == 2
        assert _reload(half.id).progress_percentage == 50
        assert _reload(half.id).status == "in_progress"
        assert _reload(full.id).progress_percentage == 100
        assert _reload(full.id).status == "completed"

    def test_completed_milestones_not_counted(self, board, make_milestone, make_task):
        open_m = make_milestone(name="Open")
        make_task(open_m, board["doing"])
        make_milestone(name="Closed", status="completed", progress=100)

        report = MilestoneProgressService.update_milestones_for_project(open_m.project_id)
        assert report.total_processed == 1
        assert report.updated_milestones == []

    def test_creation_order(self, board, make_milestone, make_task):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        late = make_milestone(name="Late", created_at=base + timedelta(days=2))
        early = make_milestone(name="Early", created_at=base)
        for m in (late, early):
            make_task(m, board["done"])

        report = MilestoneProgressService.update_milestones_for_project(late.project_id)
        assert [c.milestone_id for c in report.updated_milestones] == [early.id, late.id]

    def test_one_failure_does_not_abort_batch(self, board, make_milestone, make_task):
        first = make_milestone(name="First", created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
        second = make_milestone(name="Second", created_at=datetime(2026, 1, 2, tzinfo=timezone.utc))
        make_task(second, board["done"])

        real = MilestoneProgressService.recompute

        def flaky(milestone_id):
            if milestone_id == first.id:
                raise RuntimeError("deadlock detected")
            return real(milestone_id)

        with patch.object(MilestoneProgressService, "recompute", side_effect=flaky):
            report = MilestoneProgressService.update_milestones_for_project(first.project_id)

        assert report.success is False
        assert len(report.errors) == 1
        assert "deadlock detected" in report.errors[0]
        assert report.total_processed == 1
        assert [c.milestone_id for c in report.updated_milestones] == [second.id]

    def test_unknown_project_is_empty(self):
        report = MilestoneProgressService.update_milestones_for_project("no-such-project")
        assert report.success is True
        assert report.total_processed == 0


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 5: sweep()
# ═══════════════════════════════════════════════════════════════════════════

class TestSweep:

    def test_only_in_progress_candidates(self, make_milestone):
        in_progress = make_milestone(name="A", status="in_progress", progress=30)
        make_milestone(name="B", status="not_started")
        make_milestone(name="C", status="completed", progress=100)
        make_milestone(name="D", status="on_hold")

        candidates = MilestoneProgressService.get_milestones_needing_update(50)
        assert [m.id for m in candidates] == [in_progress.id]
        assert MilestoneProgressService.count_in_progress() == 1

    def test_candidates_oldest_first_and_limited(self, make_milestone):
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        newest = make_milestone(name="N", status="in_progress", updated_at=base + timedelta(hours=2))
        oldest = make_milestone(name="O", status="in_progress", updated_at=base)
        middle = make_milestone(name="M", status="in_progress", updated_at=base + timedelta(hours=1))

        ids = [m.id for m in MilestoneProgressService.get_milestones_needing_update(2)]
        assert ids == [oldest.id, middle.id]
        assert newest.id not in ids

    def test_sweep_sums_sub_reports(self, board, make_milestone, make_task):
        drifted = make_milestone(name="Drifted", status="in_progress", progress=10)
        make_task(drifted, board["done"])
        make_task(drifted, board["todo"])
        accurate = make_milestone(name="Accurate", status="in_progress", progress=50)
        make_task(accurate, board["done"])
        make_task(accurate, board["doing"])

        report = MilestoneProgressService.sweep(50)
        assert report.success is True
        assert report.total_processed == 2
        assert [c.milestone_id for c in report.updated_milestones] == [drifted.id]
        assert _reload(drifted.id).progress_percentage == 50

    def test_sweep_nothing_to_do(self, make_milestone):
        make_milestone(status="not_started")
        report = MilestoneProgressService.sweep()
        assert report.to_dict() == ReconciliationReport().to_dict()

    def test_candidate_query_failure_returns_empty(self):
        with patch.object(Milestone, "query") as mock_query:
            mock_query.filter.side_effect = RuntimeError("db down")
            assert MilestoneProgressService.get_milestones_needing_update() == []


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 6: ReconciliationReport
# ═══════════════════════════════════════════════════════════════════════════

class TestReconciliationReport:

    def test_merge_flips_success_on_error(self):
        agg = ReconciliationReport()
        agg.merge(ReconciliationReport(total_processed=1))
        assert agg.success is True
        agg.merge(ReconciliationReport.failure("Milestone not found: x"))
        assert agg.success is False
        assert agg.total_processed == 1
        assert agg.errors == ["Milestone not found: x"]
