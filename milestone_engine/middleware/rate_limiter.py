"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter instance
is created in ``milestone_engine/__init__.py`` with no default limits and
its storage injected through ``RATELIMIT_STORAGE_URI`` (``memory://`` for a
single process, Redis when several workers share the counters).

Usage:
    from milestone_engine.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

# Webhook bursts follow board activity (a drag across columns = one event)
WEBHOOK_LIMIT = "300/minute"
RECOMPUTE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Task webhook:         300/minute
        - Recompute/scheduler:  60/minute  (each call may sweep 50 milestones)
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("task_webhook_bp")
    if bp:
        limiter.limit(WEBHOOK_LIMIT)(bp)

    for bp_name in ("milestone_progress_bp", "scheduler_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(RECOMPUTE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: webhook: %s, recompute: %s, storage: %s",
        WEBHOOK_LIMIT, RECOMPUTE_LIMIT, app.config.get("RATELIMIT_STORAGE_URI"),
    )
