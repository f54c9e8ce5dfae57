"""
/api/anonymous routes - Anonymous quota and migration.

Handles:
- GET /api/anonymous/videos/count - drift-corrected count and limit
- POST /api/anonymous/migrate - move an anonymous session's videos to the current user
"""

import logging

from flask import Blueprint, jsonify, g, make_response, request

from vidlib.errors import (
    InvalidSessionFormat,
    SessionNotFound,
    StoreUnavailable,
    UserNotFound,
)
from vidlib.middleware import clear_anonymous_cookie, get_services, no_cache, require_identity, require_registered
from vidlib.utils.error_handlers import make_error_response

logger = logging.getLogger("vidlib.routes.anonymous")

bp = Blueprint("anonymous", __name__)

MIGRATION_FAILED_MESSAGE = "could not transfer your prior activity"


@bp.route("/videos/count", methods=["GET"])
@require_identity
@no_cache
def video_count():
    """
    Current video count for the anonymous caller.

    Response:
    {
        "ok": true,
        "count": 2,
        "max_allowed": 3,
        "remaining": 1,
        "at_limit": false
    }
    """
    if g.anonymous_session_id is None:
        return make_error_response("NOT_ANONYMOUS", "Registered users have no anonymous quota", 400)

    usage = get_services().quota.get_usage(g.anonymous_session_id)
    return jsonify({
        "ok": True,
        "count": usage.count,
        "max_allowed": usage.limit,
        "remaining": usage.remaining,
        "at_limit": usage.at_limit,
    })


@bp.route("/migrate", methods=["POST"])
@require_registered
def migrate():
    """
    Migrate an anonymous session to the logged-in user.

    Request body (optional; falls back to the anonymous credential):
    {
        "sessionId": "anon_..."
    }

    Response:
    {
        "ok": true,
        "migrated_count": 2,
        "retired": true
    }
    """
    data = request.get_json(silent=True) or {}
    session_id = (data.get("sessionId") or data.get("session_id") or "").strip()
    if not session_id and g.credentials is not None:
        session_id = g.credentials.anonymous_token or ""

    if not session_id:
        return make_error_response("VALIDATION_ERROR", "sessionId is required", 400)

    try:
        result = get_services().migration.migrate(session_id, g.user_id)
    except InvalidSessionFormat:
        return make_error_response("INVALID_SESSION", "Invalid anonymous session id", 400)
    except SessionNotFound:
        return make_error_response("SESSION_NOT_FOUND", "Anonymous session not found", 404)
    except UserNotFound:
        return make_error_response("USER_NOT_FOUND", "User not found", 404)
    except StoreUnavailable as e:
        logger.error("[MIGRATION] Migration failed for user %s: %s", g.user_id, e)
        return make_error_response("MIGRATION_FAILED", MIGRATION_FAILED_MESSAGE, 500)

    response = make_response(jsonify({
        "ok": True,
        "migrated_count": result.migrated_count,
        "retired": result.retired,
    }))
    clear_anonymous_cookie(response)
    return response
