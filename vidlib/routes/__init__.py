"""
Routes package for the vidlib backend.
Contains Flask Blueprints for different API namespaces.
"""

import logging

logger = logging.getLogger("vidlib.routes")

__all__ = [
    "register_blueprints",
]


def _log_route_map(app) -> None:
    """Log all registered /api/* routes at startup for debugging."""
    api_routes = []
    for rule in app.url_map.iter_rules():
        if rule.rule.startswith("/api"):
            methods = ",".join(sorted(m for m in rule.methods if m not in ("HEAD", "OPTIONS")))
            api_routes.append(f"  {methods:8s} {rule.rule}")

    api_routes.sort(key=lambda x: x.split()[-1])
    logger.debug("[ROUTES] Registered API endpoints:\n%s", "\n".join(api_routes))
    logger.info("[ROUTES] Total: %d endpoints", len(api_routes))


def register_blueprints(app) -> None:
    """Register all blueprints with the Flask app."""
    from vidlib.routes.health import bp as health_bp
    from vidlib.routes.me import bp as me_bp
    from vidlib.routes.anonymous import bp as anonymous_bp
    from vidlib.routes.videos import bp as videos_bp
    from vidlib.routes.auth import bp as auth_bp
    from vidlib.routes.admin import bp as admin_bp

    app.register_blueprint(health_bp, url_prefix="/api/health")
    app.register_blueprint(me_bp, url_prefix="/api/me")
    app.register_blueprint(anonymous_bp, url_prefix="/api/anonymous")
    app.register_blueprint(videos_bp, url_prefix="/api/videos")
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    _log_route_map(app)
