"""
Session, quota and migration errors.

Database failures are raised by vidlib.db as DatabaseError subclasses and are
translated to StoreUnavailable at service boundaries with translate_store_errors().

Usage:
    from vidlib.errors import SessionNotFound, translate_store_errors

    with translate_store_errors("load session"):
        row = sessions.get_anonymous(session_id)
    if row is None:
        raise SessionNotFound(session_id)
"""

from contextlib import contextmanager
from typing import Optional

from vidlib.db import DatabaseError


class SessionError(Exception):
    """Base exception for identity, quota and migration failures."""

    code = "SESSION_ERROR"

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class SessionNotFound(SessionError):
    """The anonymous session does not exist."""

    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Anonymous session not found: {session_id}", session_id=session_id)


class InvalidSessionFormat(SessionError):
    """The anonymous session token is not shaped like an issued id."""

    code = "INVALID_SESSION"

    def __init__(self, session_id: Optional[str]):
        super().__init__(f"Invalid anonymous session id: {session_id!r}", session_id=session_id)


class UserNotFound(SessionError):
    """The target user of a migration does not exist."""

    code = "USER_NOT_FOUND"

    def __init__(self, user_id):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class SessionCollision(SessionError):
    """A freshly generated session id is already taken."""

    code = "SESSION_COLLISION"

    def __init__(self, session_id: str):
        super().__init__(f"Anonymous session id already issued: {session_id}", session_id=session_id)


class StoreUnavailable(SessionError):
    """The session or resource store could not be reached or queried."""

    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str, original_error: Exception = None, session_id: Optional[str] = None):
        super().__init__(message, session_id=session_id)
        self.original_error = original_error


class PartialCascadeFailure(SessionError):
    """
    Raised when deleting a session's data stopped part-way.

    Videos deleted before the failure stay deleted; the session row is kept
    so the next sweep retries the remainder.
    """

    code = "PARTIAL_CASCADE_FAILURE"

    def __init__(
        self,
        session_id: str,
        video_id=None,
        completed: int = 0,
        original_error: Exception = None,
    ):
        where = f" at video {video_id}" if video_id is not None else ""
        super().__init__(
            f"Cascade for session {session_id} stopped{where} after {completed} videos: {original_error}",
            session_id=session_id,
        )
        self.video_id = video_id
        self.completed = completed
        self.original_error = original_error


@contextmanager
def translate_store_errors(operation: str, session_id: Optional[str] = None):
    """Re-raise DatabaseError from the wrapped block as StoreUnavailable."""
    try:
        yield
    except DatabaseError as e:
        raise StoreUnavailable(f"{operation} failed: {e}", original_error=e, session_id=session_id) from e


__all__ = [
    "SessionError",
    "SessionNotFound",
    "InvalidSessionFormat",
    "UserNotFound",
    "SessionCollision",
    "StoreUnavailable",
    "PartialCascadeFailure",
    "translate_store_errors",
]
