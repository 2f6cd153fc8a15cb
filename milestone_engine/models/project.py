"""Project and workflow stage models.

Both tables are owned by the surrounding project-management application;
the progress engine only reads them.
"""

import uuid
from datetime import datetime, timezone

from milestone_engine.models import db


def _uuid() -> str:
    return str(uuid.uuid4())


class Project(db.Model):
    """Container for milestones, stages and tasks."""

    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    stages = db.relationship(
        "Stage", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Stage.position",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class Stage(db.Model):
    """
    Workflow column a task sits in (kanban column).

    ``is_terminal`` marks the stage as "done" for progress purposes.  It is
    nullable: stages created before the flag existed fall back to matching
    their name against ``TERMINAL_STAGE_NAMES``.
    """

    __tablename__ = "stages"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    is_terminal = db.Column(
        db.Boolean, nullable=True,
        comment="True = done column; NULL = infer from name",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "position": self.position,
            "is_terminal": self.is_terminal,
        }

    def __repr__(self):
        return f"<Stage {self.name} terminal={self.is_terminal}>"
