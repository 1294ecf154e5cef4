"""
Rate limiting configuration.

Two layers:
    1. Flask-Limiter per-blueprint limits keyed by remote address. Storage
       is REDIS_URL ("memory://" in dev), so these hold across workers
       when Redis is configured.
    2. A per-identity fixed-window budget (RATE_LIMIT_MAX_REQUESTS per
       RATE_LIMIT_WINDOW_SECONDS, default 100 / 15 min) checked by
       ``enforce_identity_limit`` once the security context is known.
       Counters are in-process only.

Usage:
    from contentflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import current_app, request as flask_request

from contentflow.core.container import get_core
from contentflow.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

API_LIMIT = "120/minute"


def identity_key(ctx) -> str:
    """Limiter key: the user when known, else the remote address."""
    if ctx is not None and ctx.user_id:
        return f"user:{ctx.user_id}"
    return f"ip:{flask_request.remote_addr or 'unknown'}"


def enforce_identity_limit(ctx) -> None:
    """
    Count one request against the caller's fixed-window budget.

    Raises:
        RateLimitExceeded: budget for the current window is used up.
    """
    if not current_app.config.get("RATE_LIMIT_ENABLED", True):
        return
    limiter = get_core().rate_limiter
    key = identity_key(ctx)
    if not limiter.allow(key):
        logger.warning(
            "Identity rate limit exceeded: %s", key,
            extra={"event_type": "rate_limited", "user_id": getattr(ctx, "user_id", None)},
        )
        raise RateLimitExceeded(key, retry_after=limiter.retry_after(key))


def init_rate_limits(app, limiter):
    """
    Apply Flask-Limiter limits to API blueprints.

    Limits (per remote IP):
        - work item endpoints: 120/minute

    Flask-Limiter is disabled in testing mode; the per-identity budget is
    controlled separately by RATE_LIMIT_ENABLED.
    """
    if app.config.get("TESTING"):
        app.logger.info("Flask-Limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("work_items")
    if bp:
        limiter.limit(API_LIMIT)(bp)

    app.logger.info(
        "Rate limiter configured — work items: %s, per identity: %s/%ss",
        API_LIMIT,
        app.config.get("RATE_LIMIT_MAX_REQUESTS"),
        app.config.get("RATE_LIMIT_WINDOW_SECONDS"),
    )
