"""
Shared-secret gate for trigger endpoints (webhook, cron/scheduler).

Each endpoint family reads its own config key.  When the key is empty the
gate is open, which is only acceptable behind a trusted network boundary.

Usage:
    @bp.route("/cron/milestone-progress", methods=["POST"])
    @require_trigger_secret("CRON_SECRET")
    def run_milestone_progress():
        ...
"""

import hmac
import logging
from functools import wraps

from flask import current_app, request

from milestone_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "Bearer "


def bearer_token() -> str | None:
    """Return the token from ``Authorization: Bearer <token>``, or None."""
    header = request.headers.get("Authorization", "")
    if not header.startswith(_BEARER_PREFIX):
        return None
    token = header[len(_BEARER_PREFIX):].strip()
    return token or None


def secret_matches(configured: str | None, presented: str | None) -> bool:
    """Constant-time comparison; an unconfigured secret always matches."""
    if not configured:
        return True
    if not presented:
        return False
    return hmac.compare_digest(configured.encode("utf-8"), presented.encode("utf-8"))


def require_trigger_secret(config_key: str):
    """Decorator: reject the request with 401 unless the bearer secret matches."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            configured = current_app.config.get(config_key)
            if not secret_matches(configured, bearer_token()):
                logger.warning(
                    "Unauthorized trigger attempt on %s %s", request.method, request.path,
                    extra={"path": request.path, "remote_addr": request.remote_addr,
                           "security_code": "trigger_secret_mismatch"},
                )
                return api_error(E.UNAUTHORIZED, "Unauthorized")
            return fn(*args, **kwargs)
        return wrapper
    return decorator
