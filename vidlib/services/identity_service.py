"""
Identity Service - decides who is making a request.

Every request resolves to one of:
- RegisteredIdentity: a valid, unexpired user session token
- AnonymousIdentity: a known anonymous session, or a freshly issued one
- None: the store could not be reached (fail closed, never raised)

Anonymous session ids look like anon_<epoch-ms>_<24 hex chars>. An id is
never reissued: inserting an id that already exists is rejected and a new
one is generated instead.

This service also owns the registered session lifecycle (create at login,
invalidate at logout or password change).

Usage:
    from vidlib.services.identity_service import IdentityResolver, RequestCredentials

    creds = RequestCredentials(user_token=token, anonymous_token=anon_id)
    identity = resolver.resolve(creds)
    if identity is None:
        ...  # 401 NO_SESSION
    if creds.clear_user_token:
        ...  # delete the stale session cookie
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union, Callable, Dict, Any, List

from vidlib.config import config
from vidlib.db import DatabaseError, now_utc
from vidlib.errors import SessionCollision, StoreUnavailable, translate_store_errors
from vidlib.utils.helpers import mask_token, now_ms

_default_logger = logging.getLogger("vidlib.identity")

_ANON_ID_RE = re.compile(r"^" + re.escape(config.ANONYMOUS_SESSION_PREFIX) + r"\d{1,16}_[0-9a-f]{24}$")


def is_valid_anonymous_id(value: Optional[str]) -> bool:
    """Cheap shape check; says nothing about whether the id exists."""
    return bool(value) and isinstance(value, str) and _ANON_ID_RE.match(value) is not None


def generate_anonymous_id() -> str:
    return f"{config.ANONYMOUS_SESSION_PREFIX}{now_ms()}_{secrets.token_hex(12)}"


def generate_user_session_token() -> str:
    return f"session_{secrets.token_hex(32)}"


# ─────────────────────────────────────────────────────────────
# Value Types
# ─────────────────────────────────────────────────────────────

@dataclass
class RequestCredentials:
    """
    Credentials carried by one request.

    header_user_token is a second registered token sent in a header next to
    the cookie; it is tried when the cookie token is stale.

    clear_user_token is set by resolve() when the registered token was
    expired or unknown, so the caller can drop it from the client.
    """
    user_token: Optional[str] = None
    header_user_token: Optional[str] = None
    anonymous_token: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    clear_user_token: bool = False

    def user_token_candidates(self) -> List[str]:
        tokens = []
        for token in (self.user_token, self.header_user_token):
            if token and token not in tokens:
                tokens.append(token)
        return tokens


@dataclass(frozen=True)
class RegisteredIdentity:
    user_id: int
    session_token: str

    is_registered = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "registered", "user_id": self.user_id}


@dataclass(frozen=True)
class AnonymousIdentity:
    session_id: str
    is_new: bool = False

    is_registered = False

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "anonymous", "session_id": self.session_id, "is_new": self.is_new}


Identity = Union[RegisteredIdentity, AnonymousIdentity]


# ─────────────────────────────────────────────────────────────
# Resolver
# ─────────────────────────────────────────────────────────────

class IdentityResolver:
    """Resolves request credentials to an identity against a session store."""

    MAX_ID_ATTEMPTS = 3

    def __init__(
        self,
        sessions,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = now_utc,
        id_factory: Callable[[], str] = generate_anonymous_id,
        user_session_ttl_days: Optional[int] = None,
    ):
        self.sessions = sessions
        self.logger = logger or _default_logger
        self.clock = clock
        self.id_factory = id_factory
        self.user_session_ttl_days = user_session_ttl_days or config.USER_SESSION_TTL_DAYS

    def resolve(self, credentials: RequestCredentials) -> Optional[Identity]:
        """
        Resolve credentials to an identity.

        Never raises: a store outage or exhausted id generation is logged and
        reported as None.
        """
        try:
            return self._resolve(credentials)
        except (DatabaseError, StoreUnavailable) as e:
            self.logger.error("[IDENTITY] Store unavailable during resolution: %s", e)
            return None
        except SessionCollision as e:
            self.logger.error("[IDENTITY] Could not issue a unique anonymous id: %s", e)
            return None

    def _resolve(self, credentials: RequestCredentials) -> Identity:
        for token in credentials.user_token_candidates():
            registered = self._resolve_registered(credentials, token)
            if registered is not None:
                return registered

        anon = credentials.anonymous_token
        if anon:
            if not is_valid_anonymous_id(anon):
                self.logger.info("[IDENTITY] Ignoring malformed anonymous token %s", mask_token(anon))
            elif self.sessions.touch_anonymous(anon):
                return AnonymousIdentity(session_id=anon, is_new=False)
            else:
                self.logger.info("[IDENTITY] Unknown anonymous session %s, issuing new id", mask_token(anon))

        return self._create_anonymous(credentials)

    def _resolve_registered(self, credentials: RequestCredentials, token: str) -> Optional[RegisteredIdentity]:
        row = self.sessions.get_user_session(token)

        if row is None:
            self.logger.info("[IDENTITY] Unknown user session %s", mask_token(token))
            credentials.clear_user_token = True
            return None

        if row["expires_at"] <= self.clock():
            self.logger.info("[IDENTITY] Expired user session %s, removing", mask_token(token))
            self.sessions.delete_user_session(token)
            credentials.clear_user_token = True
            return None

        self.sessions.touch_user_session(token)
        return RegisteredIdentity(user_id=row["user_id"], session_token=token)

    def _create_anonymous(self, credentials: RequestCredentials) -> AnonymousIdentity:
        session_id = None
        for attempt in range(1, self.MAX_ID_ATTEMPTS + 1):
            session_id = self.id_factory()
            try:
                self.sessions.insert_anonymous(
                    session_id,
                    user_agent=credentials.user_agent,
                    ip_address=credentials.ip_address,
                )
            except SessionCollision:
                self.logger.warning(
                    "[IDENTITY] Anonymous id collision on attempt %d: %s",
                    attempt,
                    mask_token(session_id),
                )
                continue

            self.logger.info("[IDENTITY] Created anonymous session %s", mask_token(session_id))
            return AnonymousIdentity(session_id=session_id, is_new=True)

        raise SessionCollision(session_id)

    # ─────────────────────────────────────────────────────────────
    # Registered Session Lifecycle
    # ─────────────────────────────────────────────────────────────

    def create_user_session(
        self,
        user_id: int,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a registered session at login/registration.

        Returns the session row including session_token and expires_at.

        Raises:
            StoreUnavailable: On database failure
        """
        token = generate_user_session_token()
        expires_at = self.clock() + timedelta(days=self.user_session_ttl_days)

        with translate_store_errors("create user session"):
            row = self.sessions.insert_user_session(
                token,
                user_id,
                expires_at,
                user_agent=user_agent,
                ip_address=ip_address,
            )

        self.logger.info("[IDENTITY] Created user session %s for user %s", mask_token(token), user_id)
        return row

    def invalidate_user_session(self, session_token: str) -> bool:
        """Logout. Returns True if a session was removed."""
        with translate_store_errors("invalidate user session"):
            removed = self.sessions.delete_user_session(session_token)
        if removed:
            self.logger.info("[IDENTITY] Invalidated user session %s", mask_token(session_token))
        return removed

    def invalidate_all_user_sessions(self, user_id: int, except_token: Optional[str] = None) -> int:
        """Password change / logout everywhere. Returns count of removed sessions."""
        with translate_store_errors("invalidate all user sessions"):
            count = self.sessions.delete_user_sessions_for_user(user_id, except_token=except_token)
        self.logger.info("[IDENTITY] Invalidated %d sessions for user %s", count, user_id)
        return count

    def discard_anonymous(self, session_id: str) -> bool:
        """
        Drop an anonymous session issued to a request that then logged in.

        Only a session that owns nothing is removed. Never raises; an outage
        leaves the row for the sweeper.
        """
        try:
            removed = self.sessions.delete_empty_anonymous(session_id)
        except DatabaseError as e:
            self.logger.warning("[IDENTITY] Could not discard anonymous session %s: %s", mask_token(session_id), e)
            return False
        if removed:
            self.logger.info("[IDENTITY] Discarded unused anonymous session %s", mask_token(session_id))
        return removed
