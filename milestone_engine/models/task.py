"""Task model (read-only to the progress engine)."""

import uuid
from datetime import datetime, timezone

from milestone_engine.models import db


class Task(db.Model):
    """A unit of work on a project board, optionally linked to a milestone."""

    __tablename__ = "tasks"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_id = db.Column(
        db.String(36),
        db.ForeignKey("milestones.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    stage_id = db.Column(
        db.String(36),
        db.ForeignKey("stages.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title = db.Column(db.String(500), nullable=False)
    assigned_to = db.Column(db.String(150), nullable=True)
    priority = db.Column(db.String(20), nullable=True, default="medium")
    due_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    stage = db.relationship("Stage", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "milestone_id": self.milestone_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage.name if self.stage else None,
            "title": self.title,
            "assigned_to": self.assigned_to,
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]}>"
