"""
/api/videos routes - Saving analysed videos.

Handles:
- POST /api/videos - save a video for the caller; anonymous callers are
  checked against the quota before anything is written
"""

import logging

from flask import Blueprint, jsonify, g, request

from vidlib.middleware import get_services, require_identity
from vidlib.utils.error_handlers import make_error_response
from vidlib.utils.helpers import mask_token

logger = logging.getLogger("vidlib.routes.videos")

bp = Blueprint("videos", __name__)


@bp.route("", methods=["POST"])
@require_identity
def create_video():
    """
    Save a video.

    Request body:
    {
        "title": "Talk about things",
        "source_url": "https://..."
    }

    Anonymous callers at the limit get 403 ANONYMOUS_LIMIT_REACHED with
    "action": "register".
    """
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    source_url = (data.get("source_url") or data.get("url") or "").strip() or None

    if not title:
        return make_error_response("VALIDATION_ERROR", "title is required", 400)

    services = get_services()
    identity = g.identity

    if identity.is_registered:
        video = services.resources.create_video(title, source_url=source_url, user_id=identity.user_id)
        return jsonify({"ok": True, "video": _serialize(video)}), 201

    session_id = identity.session_id
    if services.quota.has_reached_limit(session_id):
        logger.info("[QUOTA] Limit reached for %s", mask_token(session_id))
        return make_error_response(
            "ANONYMOUS_LIMIT_REACHED",
            "Create an account to save more videos",
            403,
            details={"action": "register", "limit": services.quota.limit},
        )

    video = services.resources.create_video(title, source_url=source_url, anonymous_session_id=session_id)
    count = services.quota.increment_on_create(session_id)

    return jsonify({
        "ok": True,
        "video": _serialize(video),
        "quota": {
            "count": count,
            "limit": services.quota.limit,
            "remaining": max(0, services.quota.limit - count),
        },
    }), 201


def _serialize(video: dict) -> dict:
    created_at = video.get("created_at")
    return {
        "id": video.get("id"),
        "title": video.get("title"),
        "source_url": video.get("source_url"),
        "created_at": created_at.isoformat() if created_at else None,
    }
