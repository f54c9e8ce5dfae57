"""
/api/admin routes - Admin-only maintenance endpoints.

Handles:
- POST /api/admin/sessions/sweep - run a session cleanup now
- POST /api/admin/sessions/audit - detect/repair anonymous counter drift

All endpoints require the X-Admin-Token header.
"""

from flask import Blueprint, jsonify, request

from vidlib.middleware import get_services, require_admin
from vidlib.utils.error_handlers import make_error_response
from vidlib.utils.helpers import clamp_int, parse_bool

bp = Blueprint("admin", __name__)


@bp.route("/sessions/sweep", methods=["POST"])
@require_admin
def sweep_sessions():
    """
    Request body (optional):
    {
        "days": 30,
        "dry_run": false
    }
    """
    data = request.get_json(silent=True) or {}
    days = data.get("days")
    if days is not None:
        try:
            days = int(days)
        except (TypeError, ValueError):
            days = -1
        if days < 0:
            return make_error_response("VALIDATION_ERROR", "days must be a non-negative integer", 400)

    sweeper = get_services().sweeper

    if parse_bool(data.get("dry_run")):
        candidates = sweeper.find_candidates(inactive_threshold_days=days)
        return jsonify({
            "ok": True,
            "dry_run": True,
            "candidates": len(candidates),
        })

    summary = sweeper.run_cleanup(inactive_threshold_days=days)
    return jsonify({"ok": True, "dry_run": False, **summary})


@bp.route("/sessions/audit", methods=["POST"])
@require_admin
def audit_sessions():
    """
    Request body (optional):
    {
        "limit": 1000,
        "dry_run": true
    }
    """
    data = request.get_json(silent=True) or {}
    limit = data.get("limit")
    if limit is not None:
        limit = clamp_int(limit, 1, 100000, 1000)

    summary = get_services().quota.audit(limit=limit, dry_run=parse_bool(data.get("dry_run")))
    return jsonify({"ok": True, **summary})
