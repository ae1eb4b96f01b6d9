"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in qms/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from qms.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Blueprints that take most of the create/update traffic
WRITE_BLUEPRINTS = (
    "improvement", "audits", "ncr", "capa", "organization",
    "users", "admin", "data_import",
)

# Expensive endpoints (PDF and workbook rendering, native DB tools)
HEAVY_BLUEPRINTS = ("evidence_pack", "system", "export")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Auth endpoints:    10/minute  (credential stuffing guard)
        - Heavy endpoints:   10/minute  (PDF generation, backups)
        - Write blueprints: 120/minute
        - Health check:      exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit("10/minute")(bp)

    for bp_name in HEAVY_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("10/minute")(bp)

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("120/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — auth: 10/min, heavy: 10/min, write: 120/min")
