"""
Milestone Progress Engine
Progress Dispatcher.

Out-of-band hand-off from the task webhook to the recompute core.  The
webhook calls :meth:`ProgressDispatcher.dispatch` and returns immediately;
the recompute runs on a bounded worker pool.  Whatever happens downstream
(failure report, exception, HTTP error, timeout) is logged here and never
reaches the event source.

Modes (``PROGRESS_DISPATCH_MODE``):
    local: run ``update_milestone_progress`` in-process under an app context
    http:  POST ``{milestone_id, task_id}`` to the recompute endpoint

The pool is drained at interpreter exit so queued recomputes are not
dropped on a clean shutdown.
"""

from __future__ import annotations

import atexit
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import requests
from flask import Flask, has_request_context, request

from milestone_engine.core.exceptions import DispatchError

logger = logging.getLogger(__name__)

RECOMPUTE_PATH = "/api/v1/cron/milestone-progress"


class ProgressDispatcher:
    """Bounded worker pool running milestone recomputes for the webhook."""

    def __init__(self) -> None:
        self._app: Flask | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._atexit_registered = False

    def init_app(self, app: Flask) -> None:
        self._app = app
        app.extensions["progress_dispatcher"] = self
        if not self._atexit_registered:
            atexit.register(self.shutdown)
            self._atexit_registered = True

    # ── Public API ───────────────────────────────────────────────────────

    def dispatch(self, milestone_id: str, *, task_id: str | None = None) -> bool:
        """
        Queue a recompute for ``milestone_id``.

        Returns:
            True if the job was handed off (or run inline), False if the
            dispatcher could not accept it.  Never raises.
        """
        if self._app is None:
            logger.error("Progress dispatcher not initialized; dropping milestone %s",
                         milestone_id, extra={"milestone_id": milestone_id})
            return False

        target_url = self._target_url()
        if self._app.config.get("PROGRESS_DISPATCH_INLINE"):
            self._run(milestone_id, task_id, target_url)
            return True

        try:
            self._get_executor().submit(self._run, milestone_id, task_id, target_url)
        except RuntimeError as exc:
            # Executor already shut down (process exiting)
            logger.error("Could not queue recompute for milestone %s: %s", milestone_id, exc,
                         extra={"milestone_id": milestone_id, "task_id": task_id})
            return False
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            logger.info("Draining progress dispatcher")
            executor.shutdown(wait=wait)

    # ── Internal ─────────────────────────────────────────────────────────

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                workers = int(self._app.config.get("PROGRESS_DISPATCH_WORKERS", 4))
                self._executor = ThreadPoolExecutor(
                    max_workers=max(workers, 1),
                    thread_name_prefix="progress-dispatch",
                )
            return self._executor

    def _target_url(self) -> str | None:
        """Recompute endpoint for http mode, resolved on the caller's thread."""
        configured = self._app.config.get("PROGRESS_DISPATCH_URL")
        if configured:
            return configured
        if has_request_context():
            return request.url_root.rstrip("/") + RECOMPUTE_PATH
        return None

    def _run(self, milestone_id: str, task_id: str | None, target_url: str | None) -> None:
        extra = {"milestone_id": milestone_id, "task_id": task_id}
        try:
            if self._app.config.get("PROGRESS_DISPATCH_MODE") == "http":
                updated_count = self._post(milestone_id, task_id, target_url)
            else:
                updated_count = self._run_local(milestone_id)
            logger.info("Milestone progress update triggered successfully (updated=%s)",
                        updated_count, extra=extra)
        except DispatchError as exc:
            logger.error("Failed to trigger milestone progress update: %s", exc.reason, extra=extra)
        except Exception:
            logger.exception("Error triggering milestone progress update", extra=extra)

    def _run_local(self, milestone_id: str) -> int:
        from milestone_engine.services.milestone_progress_service import MilestoneProgressService

        with self._app.app_context():
            report = MilestoneProgressService.update_milestone_progress(milestone_id)
        if not report.success:
            raise DispatchError(milestone_id, "; ".join(report.errors))
        return len(report.updated_milestones)

    def _post(self, milestone_id: str, task_id: str | None, target_url: str | None) -> int:
        if not target_url:
            raise DispatchError(milestone_id, "no PROGRESS_DISPATCH_URL configured")

        headers = {"Content-Type": "application/json"}
        secret = self._app.config.get("CRON_SECRET")
        if secret:
            headers["Authorization"] = f"Bearer {secret}"

        try:
            resp = requests.post(
                target_url,
                json={"milestone_id": milestone_id, "task_id": task_id},
                headers=headers,
                timeout=self._app.config.get("PROGRESS_DISPATCH_TIMEOUT", 10),
            )
        except requests.Timeout:
            raise DispatchError(milestone_id, "timed out")
        except requests.RequestException as exc:
            raise DispatchError(milestone_id, str(exc))

        if not resp.ok:
            raise DispatchError(milestone_id, f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            body = {}
        return body.get("updated_count", 0)


progress_dispatcher = ProgressDispatcher()
