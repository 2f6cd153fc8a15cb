"""
Engine-wide exception hierarchy.

Services raise these canonical types; blueprints and the batch coordinator
translate them into HTTP responses or report error strings.

Usage:
    from milestone_engine.core.exceptions import NotFoundError

    raise NotFoundError(resource="Milestone", resource_id=milestone_id)
"""


class NotFoundError(Exception):
    """Raised when a referenced milestone or task does not exist.

    ``str(exc)`` is the report-facing message, e.g.
    ``"Milestone not found: 6f1c..."``.

    Args:
        resource: Human-readable entity name ("Milestone", "Task").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource} not found"
        if resource_id is not None:
            msg += f": {resource_id}"
        super().__init__(msg)


class DispatchError(Exception):
    """Raised inside the progress dispatcher when a hand-off fails.

    Never escapes the dispatcher; it exists so failures are logged with a
    uniform shape.
    """

    def __init__(self, milestone_id: str, reason: str) -> None:
        self.milestone_id = milestone_id
        self.reason = reason
        super().__init__(f"Dispatch for milestone {milestone_id} failed: {reason}")
