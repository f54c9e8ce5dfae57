"""Application entrypoint.

Builds the Flask app: CORS, identity middleware, blueprints, JSON error
handlers and the background session cleanup scheduler.

Usage:
    from vidlib.app import create_app

    app = create_app()                                  # PostgreSQL-backed
    app = create_app(services=test_services, start_scheduler=False)
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from flask import Flask
from flask_cors import CORS

from vidlib.config import config

logger = logging.getLogger("vidlib.app")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[int] = None) -> None:
    """Set up root logging once; later calls are no-ops."""
    if level is None:
        level = logging.DEBUG if config.SESSION_DEBUG else logging.INFO
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(level=level, format=_LOG_FORMAT)


def create_app(services=None, start_scheduler: Optional[bool] = None) -> Flask:
    """
    Create the Flask app.

    Args:
        services: A vidlib.services.Services container. Defaults to the
            PostgreSQL-backed services (and initialises the database).
        start_scheduler: Start the periodic session cleanup. Defaults to
            SESSION_CLEANUP_ENABLED when the database is configured.
    """
    app = Flask(__name__)

    # CORS configuration
    if config.ALLOW_ALL_ORIGINS:
        origins = [re.compile(r".*")]
    else:
        origins = config.ALLOWED_ORIGINS

    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "X-Admin-Token",
            config.USER_SESSION_HEADER,
            config.ANON_SESSION_HEADER,
        ],
        expose_headers=["Content-Type", config.ANON_SESSION_HEADER],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )

    from vidlib.db import USE_DB, DatabaseError, init_db
    from vidlib.services import build_default_services

    if services is None:
        if USE_DB:
            try:
                init_db()
            except DatabaseError as e:
                # Requests fail closed until the database comes back
                logger.error("[APP] Database init failed: %s", e)
        services = build_default_services()

    app.extensions["vidlib"] = services

    from vidlib.middleware import init_identity_middleware
    from vidlib.routes import register_blueprints
    from vidlib.utils.error_handlers import register_error_handlers

    init_identity_middleware(app)
    register_blueprints(app)
    register_error_handlers(app)

    if start_scheduler is None:
        start_scheduler = config.SESSION_CLEANUP_ENABLED and USE_DB

    if start_scheduler:
        from vidlib.services.session_sweeper import SessionCleanupScheduler

        scheduler = SessionCleanupScheduler(services.sweeper)
        scheduler.start()
        app.extensions["vidlib_scheduler"] = scheduler

    return app


def main() -> None:
    configure_logging()
    config.log_summary()
    app = create_app()
    app.run(host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
