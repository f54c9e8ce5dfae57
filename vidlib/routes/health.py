"""
Health check routes.

Handles:
- GET /api/health - liveness
- GET /api/health/db - database connectivity
"""

from flask import Blueprint, jsonify

from vidlib.db import USE_DB, verify_connection

bp = Blueprint("health", __name__)


@bp.route("", methods=["GET"])
def health():
    return jsonify({"ok": True})


@bp.route("/db", methods=["GET"])
def db_check():
    if not USE_DB:
        return jsonify({"ok": False, "error": "db_disabled"}), 503
    if not verify_connection():
        return jsonify({"ok": False, "error": "db_query_failed"}), 503
    return jsonify({"ok": True, "db": "connected"})
