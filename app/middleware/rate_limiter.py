"""
Rate limiting configuration.

The Limiter instance is created in ``app/__init__.py`` with no default
limits; this module applies limits per blueprint.  The CM login route is
limited separately in ``cm_session_bp`` via ``CM_LOGIN_RATE_LIMIT``.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints (per remote IP).

        - Form / approval / CM session routes: 60/minute
        - Notifications / activity feed:       200/minute
        - Health checks:                       exempt

    Disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for bp_name in ("forms", "approval", "cm_session"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in ("notification", "activity"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: write=%s read=%s cm_login=%s",
        WRITE_LIMIT, READ_LIMIT, app.config.get("CM_LOGIN_RATE_LIMIT"),
    )
