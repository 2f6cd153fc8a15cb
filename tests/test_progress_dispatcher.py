"""
Milestone Progress Engine
Tests: Progress dispatcher and trigger secret gate.

Covers:
    1. ProgressDispatcher http mode (payload, auth header, failures)
    2. Worker pool hand-off + drain
    3. secret_matches / bearer_token helpers
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
import requests
from flask import Flask

from milestone_engine.middleware.trigger_auth import bearer_token, secret_matches
from milestone_engine.services.progress_dispatcher import ProgressDispatcher

HTTP_POST = "milestone_engine.services.progress_dispatcher.requests.post"
TARGET = "http://recompute.internal/api/v1/cron/milestone-progress"


@pytest.fixture()
def http_dispatcher():
    """Dispatcher bound to a bare app in http mode, run inline."""
    bare = Flask("dispatch-test")
    bare.config.update(
        PROGRESS_DISPATCH_MODE="http",
        PROGRESS_DISPATCH_URL=TARGET,
        PROGRESS_DISPATCH_TIMEOUT=3,
        PROGRESS_DISPATCH_INLINE=True,
        PROGRESS_DISPATCH_WORKERS=2,
        CRON_SECRET="",
    )
    dispatcher = ProgressDispatcher()
    dispatcher.init_app(bare)
    yield dispatcher
    dispatcher.shutdown()


def _ok(updated_count=1):
    resp = MagicMock(ok=True, status_code=200)
    resp.json.return_value = {"updated_count": updated_count}
    return resp


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 1: http mode
# ═══════════════════════════════════════════════════════════════════════════

class TestHttpDispatch:

    def test_posts_target(self, http_dispatcher):
        with patch(HTTP_POST, return_value=_ok()) as mock_post:
            assert http_dispatcher.dispatch("m-1", task_id="t-1") is True

        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == TARGET
        assert kwargs["json"] == {"milestone_id": "m-1", "task_id": "t-1"}
        assert kwargs["timeout"] == 3
        assert "Authorization" not in kwargs["headers"]

    def test_sends_cron_secret(self, http_dispatcher):
        http_dispatcher._app.config["CRON_SECRET"] = "cron-secret"
        with patch(HTTP_POST, return_value=_ok()) as mock_post:
            http_dispatcher.dispatch("m-1")
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer cron-secret"

    def test_http_error_is_logged_not_raised(self, http_dispatcher, caplog):
        with patch(HTTP_POST, return_value=MagicMock(ok=False, status_code=500)):
            with caplog.at_level(logging.ERROR):
                assert http_dispatcher.dispatch("m-1") is True
        assert "HTTP 500" in caplog.text

    def test_timeout_is_logged_not_raised(self, http_dispatcher, caplog):
        with patch(HTTP_POST, side_effect=requests.Timeout()):
            with caplog.at_level(logging.ERROR):
                assert http_dispatcher.dispatch("m-1") is True
        assert "timed out" in caplog.text

    def test_unexpected_exception_swallowed(self, http_dispatcher, caplog):
        with patch(HTTP_POST, side_effect=ValueError("bad url")):
            with caplog.at_level(logging.ERROR):
                assert http_dispatcher.dispatch("m-1") is True
        assert "bad url" in caplog.text

    def test_no_target_outside_request(self, http_dispatcher, caplog):
        http_dispatcher._app.config["PROGRESS_DISPATCH_URL"] = ""
        with patch(HTTP_POST) as mock_post:
            with caplog.at_level(logging.ERROR):
                http_dispatcher.dispatch("m-1")
        mock_post.assert_not_called()
        assert "no PROGRESS_DISPATCH_URL configured" in caplog.text

    def test_uninitialized_dispatcher(self):
        assert ProgressDispatcher().dispatch("m-1") is False


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 2: worker pool
# ═══════════════════════════════════════════════════════════════════════════

class TestWorkerPool:

    def test_pool_runs_and_drains(self, http_dispatcher):
        http_dispatcher._app.config["PROGRESS_DISPATCH_INLINE"] = False
        with patch(HTTP_POST, return_value=_ok()) as mock_post:
            for i in range(5):
                assert http_dispatcher.dispatch(f"m-{i}") is True
            http_dispatcher.shutdown(wait=True)

        assert mock_post.call_count == 5
        posted = sorted(c.kwargs["json"]["milestone_id"] for c in mock_post.call_args_list)
        assert posted == [f"m-{i}" for i in range(5)]

    def test_local_mode_in_app(self, app, board, make_milestone, make_task):
        from milestone_engine.models import db
        from milestone_engine.models.milestone import Milestone

        m = make_milestone()
        make_task(m, board["done"])
        dispatcher = app.extensions["progress_dispatcher"]

        assert dispatcher.dispatch(m.id) is True

        db.session.expire_all()
        assert db.session.get(Milestone, m.id).progress_percentage == 100


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 3: secret gate helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestTriggerAuthHelpers:

    @pytest.mark.parametrize("configured,presented,expected", [
        ("", None, True),
        (None, "anything", True),
        ("s3cret", "s3cret", True),
        ("s3cret", "S3CRET", False),
        ("s3cret", None, False),
        ("s3cret", "", False),
    ])
    def test_secret_matches(self, configured, presented, expected):
        assert secret_matches(configured, presented) is expected

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc", "abc"),
        ("Bearer   abc  ", "abc"),
        ("Bearer ", None),
        ("Basic abc", None),
        (None, None),
    ])
    def test_bearer_token(self, app, header, expected):
        headers = {"Authorization": header} if header is not None else {}
        with app.test_request_context("/", headers=headers):
            assert bearer_token() == expected
