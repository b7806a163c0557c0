"""
Write throttling for the approval API (Flask-Limiter).

The Limiter itself lives in app/__init__.py with no default limits. This
module puts one shared limit on the mutating approval endpoints (POST /
DELETE), counted per tenant, and exempts the health blueprint. Reads are
never throttled.

    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

DEFAULT_WRITE_LIMIT = "60/minute"
_READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def tenant_rate_limit_key() -> str:
    """Bucket per tenant once tenant context resolved one, else per client IP."""
    tenant_id = getattr(g, "tenant_id", None)
    if tenant_id is not None:
        return f"tenant:{tenant_id}"
    return f"ip:{request.remote_addr or 'unknown'}"


def is_read_request() -> bool:
    return request.method in _READ_METHODS


def init_rate_limits(app, limiter):
    """Attach the approval write limit. No-op under TESTING."""
    if app.config.get("TESTING"):
        logger.debug("Rate limits skipped (TESTING)")
        return

    write_limit = app.config.get("APPROVAL_WRITE_RATE_LIMIT") or DEFAULT_WRITE_LIMIT
    limiter.limit(
        write_limit,
        key_func=tenant_rate_limit_key,
        exempt_when=is_read_request,
    )(app.blueprints["approval"])
    limiter.exempt(app.blueprints["health"])

    logger.info(
        "Approval write limit %s per tenant (storage=%s)",
        write_limit, app.config.get("RATELIMIT_STORAGE_URI", "memory://"),
    )
