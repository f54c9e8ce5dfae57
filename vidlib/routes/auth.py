"""
/api/auth routes - Registered session lifecycle.

Handles:
- POST /api/auth/logout - invalidate the current session
- POST /api/auth/logout-all - invalidate every session of the user

Login and registration forms live elsewhere; once they have a user_id they
call start_user_session() to issue the session cookie and pull in the
caller's anonymous activity.
"""

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, jsonify, g, make_response, request

from vidlib.middleware import (
    clear_anonymous_cookie,
    clear_user_session_cookie,
    get_services,
    require_registered,
    set_user_session_cookie,
)
from vidlib.services.identity_service import AnonymousIdentity
from vidlib.utils.helpers import get_client_ip

logger = logging.getLogger("vidlib.routes.auth")

bp = Blueprint("auth", __name__)


def start_user_session(user_id: int, body: Optional[Dict[str, Any]] = None):
    """
    Build the login/registration response for user_id.

    Creates a registered session, migrates the request's anonymous session
    (best effort, never blocks the login) and sets the cookies.
    """
    services = get_services()
    session = services.identity.create_user_session(
        user_id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=get_client_ip(request) or None,
    )

    identity = getattr(g, "identity", None)
    credentials = getattr(g, "credentials", None)
    migration = None

    if isinstance(identity, AnonymousIdentity) and identity.is_new:
        # Issued by this very request: nothing to migrate, and the browser
        # never saw the id
        services.identity.discard_anonymous(identity.session_id)
        g.suppress_anonymous_cookie = True
    else:
        anonymous_id = getattr(g, "anonymous_session_id", None)
        if anonymous_id is None and credentials is not None:
            anonymous_id = credentials.anonymous_token
        if anonymous_id:
            migration = services.migration.migrate_after_login(anonymous_id, user_id)

    payload = {
        "ok": True,
        "user_id": user_id,
        "session_token": session["session_token"],
        "expires_at": session["expires_at"].isoformat(),
        "migrated_count": migration.migrated_count if migration else 0,
    }
    if body:
        payload.update(body)

    response = make_response(jsonify(payload))
    set_user_session_cookie(response, session["session_token"])
    if migration is not None:
        clear_anonymous_cookie(response)
        g.suppress_anonymous_cookie = True
    return response


@bp.route("/logout", methods=["POST"])
@require_registered
def logout():
    get_services().identity.invalidate_user_session(g.identity.session_token)

    response = make_response(jsonify({"ok": True}))
    clear_user_session_cookie(response)
    return response


@bp.route("/logout-all", methods=["POST"])
@require_registered
def logout_all():
    """
    Invalidate every session of the current user, this one included.
    Used after a password change.
    """
    count = get_services().identity.invalidate_all_user_sessions(g.user_id)

    response = make_response(jsonify({"ok": True, "sessions_invalidated": count}))
    clear_user_session_cookie(response)
    return response
