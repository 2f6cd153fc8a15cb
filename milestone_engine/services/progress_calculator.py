"""
Milestone Progress Engine
Progress Calculator.

Counts the tasks linked to a milestone and how many of them sit in a
terminal ("done") stage.  A stage is terminal when its ``is_terminal`` flag
is True; stages with a NULL flag fall back to a case-insensitive match of
their name against the configured ``TERMINAL_STAGE_NAMES``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app, has_app_context
from sqlalchemy import func

from milestone_engine.models import db
from milestone_engine.models.project import Stage
from milestone_engine.models.task import Task

DEFAULT_TERMINAL_STAGE_NAMES = frozenset({
    "done", "completed", "concluded", "finished", "concluído", "concluido", "finalizado",
})


@dataclass(frozen=True)
class ProgressSnapshot:
    milestone_id: str
    total_tasks: int
    completed_tasks: int
    progress_percentage: int
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "milestone_id": self.milestone_id,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "progress_percentage": self.progress_percentage,
            "computed_at": self.computed_at.isoformat(),
        }


def percentage(completed: int, total: int) -> int:
    """Whole-number percentage, halves rounded up (2/3 → 67, 1/8 → 13)."""
    if total <= 0:
        return 0
    return int(math.floor(completed * 100 / total + 0.5))


def _terminal_names(terminal_names) -> frozenset:
    if terminal_names is None and has_app_context():
        terminal_names = current_app.config.get("TERMINAL_STAGE_NAMES") or None
    if terminal_names is None:
        return DEFAULT_TERMINAL_STAGE_NAMES
    return frozenset(n.strip().lower() for n in terminal_names)


def is_terminal_stage(stage, terminal_names=None) -> bool:
    """True when ``stage`` (a Stage or a row with ``name``/``is_terminal``) is a done stage."""
    if stage is None:
        return False
    if stage.is_terminal is not None:
        return bool(stage.is_terminal)
    return (stage.name or "").strip().lower() in _terminal_names(terminal_names)


def calculate(milestone_id: str, *, terminal_names=None) -> ProgressSnapshot:
    """Return a fresh ProgressSnapshot for ``milestone_id``.

    A milestone with no linked tasks yields ``0/0 → 0%``.  One aggregate
    query counts the linked tasks per stage; the stages are then classified
    with :func:`is_terminal_stage`, so name matching uses Python's Unicode
    case folding rather than the database's ``lower()``.  Tasks without a
    stage are never terminal.
    """
    names = _terminal_names(terminal_names)
    rows = (
        db.session.query(
            Stage.name.label("name"),
            Stage.is_terminal.label("is_terminal"),
            func.count(Task.id).label("task_count"),
        )
        .select_from(Task)
        .outerjoin(Stage, Task.stage_id == Stage.id)
        .filter(Task.milestone_id == milestone_id)
        .group_by(Task.stage_id, Stage.name, Stage.is_terminal)
        .all()
    )

    total = sum(row.task_count for row in rows)
    completed = sum(row.task_count for row in rows if is_terminal_stage(row, names))

    return ProgressSnapshot(
        milestone_id=milestone_id,
        total_tasks=int(total),
        completed_tasks=int(completed),
        progress_percentage=percentage(int(completed), int(total)),
    )
