"""
Milestone Progress Engine
Milestone model.

A milestone is a named project checkpoint whose ``progress_percentage`` is
derived from the tasks linked to it.  Once ``status == "completed"`` the row
is frozen as far as the progress engine is concerned.
"""

import uuid
from datetime import datetime, timezone

from milestone_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


class Milestone(db.Model):
    """Project checkpoint with a derived completion percentage."""

    __tablename__ = "milestones"
    __table_args__ = (
        db.CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100",
            name="ck_milestones_progress_range",
        ),
        db.Index("ix_milestones_status_updated", "status", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=STATUS_NOT_STARTED,
                       comment="not_started, in_progress, completed, on_hold")
    progress_percentage = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.Date, nullable=True)
    priority = db.Column(db.String(20), nullable=False, default="medium",
                         comment="low, medium, high, urgent")
    color = db.Column(db.String(7), nullable=True, default="#3B82F6")

    created_at = db.Column(db.DateTime(timezone=True),
                           nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           nullable=False,
                           default=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project", backref=db.backref("milestones", lazy="dynamic"))
    tasks = db.relationship("Task", backref="milestone", lazy="dynamic")

    @property
    def is_frozen(self) -> bool:
        return self.status == STATUS_COMPLETED

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "progress_percentage": self.progress_percentage,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "priority": self.priority,
            "color": self.color,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Milestone {self.name} [{self.status} {self.progress_percentage}%]>"
