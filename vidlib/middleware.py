"""
Middleware for the vidlib backend.

Resolves the caller's identity once per request (before_request) and exposes
it on flask.g, then writes back any credential changes (after_request).

Sets on g:
    - g.credentials: RequestCredentials read from cookies/headers
    - g.identity: RegisteredIdentity, AnonymousIdentity or None
    - g.user_id: set for registered callers
    - g.anonymous_session_id: set for anonymous callers

Usage:
    from vidlib.middleware import require_identity, require_registered

    @bp.route("/api/me")
    @require_identity
    def get_me():
        return jsonify({"identity": g.identity.to_dict()})
"""

import logging
from functools import wraps

from flask import current_app, g, make_response, request

from vidlib.config import config
from vidlib.services.identity_service import (
    AnonymousIdentity,
    RegisteredIdentity,
    RequestCredentials,
)
from vidlib.utils.error_handlers import make_error_response
from vidlib.utils.helpers import get_client_ip, mask_token

logger = logging.getLogger("vidlib.middleware")

# Paths that never need an identity (and must not mint anonymous sessions)
IDENTITY_EXEMPT_PREFIXES = ("/api/health", "/api/admin")


def get_services():
    """The Services container of the running app."""
    return current_app.extensions["vidlib"]


# ─────────────────────────────────────────────────────────────
# Credential Carriers
# ─────────────────────────────────────────────────────────────

def _bearer_token(req) -> str:
    auth = req.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return ""


def credentials_from_request(req) -> RequestCredentials:
    """
    Read credentials from cookies first, then headers. A header token sent
    alongside a session cookie is kept as a fallback for a stale cookie.

    Registered: cookie vl_session, Authorization: Bearer, X-Session-Token
    Anonymous:  cookie vl_anon, X-Anonymous-Session
    """
    cookie_token = req.cookies.get(config.USER_SESSION_COOKIE_NAME)
    header_token = _bearer_token(req) or req.headers.get(config.USER_SESSION_HEADER, "").strip()
    user_token = cookie_token or header_token
    anonymous_token = (
        req.cookies.get(config.ANON_SESSION_COOKIE_NAME)
        or req.headers.get(config.ANON_SESSION_HEADER, "").strip()
    )
    return RequestCredentials(
        user_token=user_token or None,
        header_user_token=(header_token or None) if cookie_token else None,
        anonymous_token=anonymous_token or None,
        user_agent=req.headers.get("User-Agent"),
        ip_address=get_client_ip(req) or None,
    )


def _cookie_kwargs(max_age: int) -> dict:
    kwargs = {
        "max_age": max_age,
        "httponly": True,
        "secure": config.SESSION_COOKIE_SECURE,
        "samesite": config.SESSION_COOKIE_SAMESITE,
        "path": "/",
    }
    if config.SESSION_COOKIE_DOMAIN:
        kwargs["domain"] = config.SESSION_COOKIE_DOMAIN
    return kwargs


def set_anonymous_cookie(response, session_id: str) -> None:
    """Hand a new anonymous id to the client as cookie and response header."""
    response.set_cookie(
        config.ANON_SESSION_COOKIE_NAME,
        session_id,
        **_cookie_kwargs(config.ANON_COOKIE_MAX_AGE_SECONDS),
    )
    response.headers[config.ANON_SESSION_HEADER] = session_id


def clear_anonymous_cookie(response) -> None:
    response.delete_cookie(
        config.ANON_SESSION_COOKIE_NAME,
        path="/",
        domain=config.SESSION_COOKIE_DOMAIN,
    )


def set_user_session_cookie(response, session_token: str) -> None:
    """Cookie max_age matches the DB expiry (USER_SESSION_TTL_DAYS)."""
    response.set_cookie(
        config.USER_SESSION_COOKIE_NAME,
        session_token,
        **_cookie_kwargs(config.USER_SESSION_TTL_SECONDS),
    )


def clear_user_session_cookie(response) -> None:
    response.delete_cookie(
        config.USER_SESSION_COOKIE_NAME,
        path="/",
        domain=config.SESSION_COOKIE_DOMAIN,
    )


# ─────────────────────────────────────────────────────────────
# Request Hooks
# ─────────────────────────────────────────────────────────────

def _is_exempt(path: str) -> bool:
    if not path.startswith("/api/"):
        return True
    return any(path.startswith(prefix) for prefix in IDENTITY_EXEMPT_PREFIXES)


def resolve_request_identity() -> None:
    """before_request hook: resolve the caller and populate g."""
    g.credentials = None
    g.identity = None
    g.user_id = None
    g.anonymous_session_id = None
    g.suppress_anonymous_cookie = False

    if request.method == "OPTIONS" or _is_exempt(request.path):
        return

    credentials = credentials_from_request(request)
    identity = get_services().identity.resolve(credentials)

    g.credentials = credentials
    g.identity = identity
    if isinstance(identity, RegisteredIdentity):
        g.user_id = identity.user_id
    elif isinstance(identity, AnonymousIdentity):
        g.anonymous_session_id = identity.session_id

    if config.SESSION_DEBUG:
        logger.info(
            "[MIDDLEWARE] %s %s identity=%s user_token=%s anon_token=%s",
            request.method,
            request.path,
            identity.to_dict() if identity else None,
            mask_token(credentials.user_token),
            mask_token(credentials.anonymous_token),
        )


def apply_identity_cookies(response):
    """after_request hook: issue new anonymous ids and drop stale user tokens."""
    identity = getattr(g, "identity", None)
    credentials = getattr(g, "credentials", None)

    # A login in this request may already have retired or dropped the session
    suppressed = getattr(g, "suppress_anonymous_cookie", False)
    if isinstance(identity, AnonymousIdentity) and identity.is_new and not suppressed:
        set_anonymous_cookie(response, identity.session_id)

    if credentials is not None and credentials.clear_user_token:
        clear_user_session_cookie(response)

    return response


def init_identity_middleware(app) -> None:
    app.before_request(resolve_request_identity)
    app.after_request(apply_identity_cookies)


# ─────────────────────────────────────────────────────────────
# Route Guards
# ─────────────────────────────────────────────────────────────

def no_cache(f):
    """
    Decorator that adds Cache-Control headers to prevent caching.

    Use for identity-dependent endpoints like /api/me and the quota count.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        response = make_response(f(*args, **kwargs))
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"
        return response

    return decorated


def require_identity(f):
    """
    Decorator that requires a resolved identity (registered or anonymous).
    Returns 401 NO_SESSION when resolution failed.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "identity", None) is None:
            logger.warning("[MIDDLEWARE] require_identity 401: path=%s", request.path)
            return make_error_response("NO_SESSION", "Could not establish a session", 401)
        return f(*args, **kwargs)

    return decorated


def require_registered(f):
    """
    Decorator that requires a registered user session.
    Returns 401 UNAUTHORIZED for anonymous callers.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if not isinstance(getattr(g, "identity", None), RegisteredIdentity):
            return make_error_response("UNAUTHORIZED", "Valid session required", 401)
        return f(*args, **kwargs)

    return decorated


def require_admin(f):
    """
    Decorator that requires the X-Admin-Token header to match ADMIN_TOKEN.

    Returns 503 if admin auth is not configured, 401 if the header is
    missing and 403 if it is wrong.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if not config.ADMIN_AUTH_CONFIGURED:
            return make_error_response("ADMIN_NOT_CONFIGURED", "Admin authentication is not configured", 503)

        admin_token = request.headers.get("X-Admin-Token")
        if not admin_token:
            return make_error_response("UNAUTHORIZED", "Admin token required", 401)
        if admin_token != config.ADMIN_TOKEN:
            return make_error_response("INVALID_ADMIN_TOKEN", "Invalid admin token", 403)

        g.admin_auth_method = "token"
        return f(*args, **kwargs)

    return decorated
