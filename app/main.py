"""
HTTP entry point for Fairshare.

Run locally with:
    python -m app.main

or behind a WSGI server with:
    gunicorn "app.main:app"

Caller identity must be injected by the identity provider in front of
this service (X-User-Id, X-User-Email, X-User-Name by default).
"""

import structlog

from fairshare.api import create_app
from fairshare.audit import configure_logging
from fairshare.config import get_settings, validate_all_settings


configure_logging()
logger = structlog.get_logger("fairshare.main")

startup_checks = validate_all_settings()
if not all(v for k, v in startup_checks.items() if not k.endswith("_error")):
    logger.warning("settings_invalid", **startup_checks)

app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    logger.info(
        "starting",
        environment=settings.app.app_environment,
        backend=settings.database.backend,
    )
    app.run(debug=settings.app.debug_mode)
