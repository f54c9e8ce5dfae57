"""
/api/me routes - Current identity.

Handles:
- GET /api/me - resolved identity; anonymous callers also get quota usage
"""

from flask import Blueprint, jsonify, g

from vidlib.middleware import get_services, no_cache, require_identity

bp = Blueprint("me", __name__)


@bp.route("", methods=["GET"])
@require_identity
@no_cache
def get_me():
    """
    Get current identity.
    Creates an anonymous session if the request carried no usable credentials.
    """
    identity = g.identity
    body = {
        "ok": True,
        "identity": identity.to_dict(),
    }

    if not identity.is_registered:
        usage = get_services().quota.get_usage(identity.session_id)
        body["quota"] = usage.to_dict()

    return jsonify(body)
