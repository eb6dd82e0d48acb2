"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in workitems/__init__.py with no default
limits; this module applies granular limits per route category, keyed by
tenant when a principal is known and by remote IP otherwise.

Usage:
    from workitems.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WORK_ITEM_LIMIT = "300/minute"


def tenant_rate_limit_key():
    """Dynamic rate limit key: tenant_id if available, else remote IP."""
    principal = getattr(g, "principal", None)
    if principal is not None:
        return f"tenant:{principal.tenant_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Work-item endpoints: 300/minute per tenant
        - Health checks:       exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("work_items")
    if bp:
        limiter.limit(WORK_ITEM_LIMIT, key_func=tenant_rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — work items: %s per tenant", WORK_ITEM_LIMIT)
