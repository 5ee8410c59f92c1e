"""
Rate limiting configuration.

The Limiter instance is created in ``sigedoc/__init__.py`` with no default
limits; this module applies granular limits per route category.

Usage:
    from sigedoc.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

LOGIN_LIMIT = "10/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.  The credential routes carry their
    own ``LOGIN_LIMIT`` decorator.

    Limits (per remote IP):
        - Login / refresh:   10/minute  (decorated in auth_bp)
        - Workflow + admin:  60/minute
        - Read-only views:   200/minute
        - Health check:      exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("documents", "areas", "roles", "users"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in ("mesa_partes", "notifications", "audit"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, write: %s, read: %s",
        LOGIN_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
