"""
Shared pytest fixtures for the Milestone Progress Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project / board: Pre-created Project with a To Do / Doing / Done board
    - make_milestone / make_task: factories for linked rows
"""

import pytest

from milestone_engine import create_app
from milestone_engine.models import db as _db
from milestone_engine.models.milestone import Milestone
from milestone_engine.models.project import Project, Stage
from milestone_engine.models.task import Task


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def set_config(app):
    """Set app.config keys for one test; originals are restored afterwards."""
    saved = {}

    def _set(**overrides):
        for key in overrides:
            saved.setdefault(key, app.config.get(key))
        app.config.update(overrides)

    yield _set
    app.config.update(saved)


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """A committed Project with no stages."""
    proj = Project(name="Website Relaunch")
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def board(project):
    """To Do / Doing / Done stages on ``project``; Done is flagged terminal."""
    stages = {
        "todo": Stage(project_id=project.id, name="To Do", position=0, is_terminal=False),
        "doing": Stage(project_id=project.id, name="Doing", position=1, is_terminal=False),
        "done": Stage(project_id=project.id, name="Done", position=2, is_terminal=True),
    }
    _db.session.add_all(stages.values())
    _db.session.commit()
    return stages


@pytest.fixture()
def make_milestone(project):
    """Factory: ``make_milestone(name=..., status=..., progress=..., created_at=...)``."""

    def _make(name="Milestone", status="not_started", progress=0, project_id=None, **kwargs):
        m = Milestone(
            project_id=project_id or project.id,
            name=name,
            status=status,
            progress_percentage=progress,
            **kwargs,
        )
        _db.session.add(m)
        _db.session.commit()
        return m

    return _make


@pytest.fixture()
def make_task(project):
    """Factory: ``make_task(milestone, stage, title=...)``; both may be None."""

    def _make(milestone=None, stage=None, title="Task", **kwargs):
        t = Task(
            project_id=project.id,
            milestone_id=milestone.id if milestone is not None else None,
            stage_id=stage.id if stage is not None else None,
            title=title,
            **kwargs,
        )
        _db.session.add(t)
        _db.session.commit()
        return t

    return _make