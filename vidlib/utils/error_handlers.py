"""
HTTP error handlers.

Every error leaves the API in the same envelope:

    {"ok": false, "error": {"code": "...", "message": "..."}}

Usage:
    from vidlib.utils.error_handlers import register_error_handlers
    register_error_handlers(app)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException

from vidlib.db import DatabaseError
from vidlib.errors import SessionError, StoreUnavailable

logger = logging.getLogger("vidlib.errors")

# Service errors that reach Flask unhandled map to these statuses
_SESSION_ERROR_STATUS = {
    "SESSION_NOT_FOUND": 404,
    "USER_NOT_FOUND": 404,
    "INVALID_SESSION": 400,
    "SESSION_COLLISION": 409,
    "STORE_UNAVAILABLE": 503,
}


def make_error_response(
    code: str,
    message: str,
    status: int,
    details: Optional[Dict[str, Any]] = None,
):
    """Build the JSON error envelope. Extra top-level keys go in details."""
    body: Dict[str, Any] = {
        "ok": False,
        "error": {
            "code": code,
            "message": message,
        },
    }
    if details:
        body.update(details)
    return jsonify(body), status


def handle_store_unavailable(e: StoreUnavailable):
    logger.error("[ERRORS] Store unavailable: %s", e)
    return make_error_response("STORE_UNAVAILABLE", "Storage is temporarily unavailable", 503)


def handle_database_error(e: DatabaseError):
    logger.error("[ERRORS] Database error: %s", e)
    return make_error_response("STORE_UNAVAILABLE", "Storage is temporarily unavailable", 503)


def handle_session_error(e: SessionError):
    status = _SESSION_ERROR_STATUS.get(e.code, 500)
    logger.warning("[ERRORS] %s: %s", e.code, e)
    return make_error_response(e.code, str(e), status)


def handle_http_exception(e: HTTPException):
    code = (e.name or "HTTP_ERROR").upper().replace(" ", "_")
    return make_error_response(code, e.description or e.name, e.code or 500)


def handle_internal_error(e: Exception):
    logger.exception("[ERRORS] Unhandled exception: %s", e)
    return make_error_response("INTERNAL_ERROR", "An unexpected error occurred", 500)


def register_error_handlers(app) -> None:
    """Attach the JSON error handlers to a Flask app."""
    app.register_error_handler(StoreUnavailable, handle_store_unavailable)
    app.register_error_handler(SessionError, handle_session_error)
    app.register_error_handler(DatabaseError, handle_database_error)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_internal_error)
