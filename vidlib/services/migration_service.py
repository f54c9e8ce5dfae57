"""
Migration Service - hands an anonymous session's videos to a registered user.

Steps:
1. Validate: id shape, session exists, user exists (no writes on failure)
2. Collect the session's videos
3. Transfer them in one transaction (user_id = U, anonymous_session_id = NULL)
4. Retire the session: video_count = 0, provenance merged into metadata

Safe to repeat. A second call finds nothing to move and returns
migrated_count = 0. If an earlier attempt moved the videos but died before
retiring, the next call still retires the session.

Usage:
    from vidlib.services.migration_service import MigrationService

    result = migration.migrate(session_id, user_id)
    print(result.migrated_count)

    # From the login/registration flow: never raises
    migration.migrate_after_login(session_id, user_id)
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, Callable, Dict, Any

from vidlib.db import now_utc
from vidlib.errors import (
    InvalidSessionFormat,
    SessionError,
    SessionNotFound,
    UserNotFound,
    translate_store_errors,
)
from vidlib.services.identity_service import is_valid_anonymous_id
from vidlib.utils.helpers import mask_token

_default_logger = logging.getLogger("vidlib.migration")


@dataclass(frozen=True)
class MigrationResult:
    session_id: str
    user_id: int
    migrated_count: int
    retired: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MigrationService:
    """Moves anonymous ownership to a registered user."""

    def __init__(
        self,
        sessions,
        resources,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.sessions = sessions
        self.resources = resources
        self.logger = logger or _default_logger
        self.clock = clock

    def migrate(self, session_id: str, user_id: int) -> MigrationResult:
        """
        Transfer every video owned by session_id to user_id.

        Raises:
            InvalidSessionFormat: session_id is not an issued anonymous id
            SessionNotFound: no such session
            UserNotFound: no such user
            StoreUnavailable: on database failure (nothing is half-moved)
        """
        if not is_valid_anonymous_id(session_id):
            raise InvalidSessionFormat(session_id)

        with translate_store_errors("validate migration", session_id=session_id):
            session = self.sessions.get_anonymous(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            if not self.sessions.user_exists(user_id):
                raise UserNotFound(user_id)

            videos = self.resources.list_by_session(session_id)

        stored_count = int(session.get("video_count") or 0)

        if not videos:
            retired = False
            if stored_count:
                # Earlier attempt moved the videos but never zeroed the counter
                self._retire(session_id, user_id, 0)
                retired = True
            self.logger.info(
                "[MIGRATION] Nothing to migrate for %s -> user %s (retired=%s)",
                mask_token(session_id),
                user_id,
                retired,
            )
            return MigrationResult(session_id, user_id, 0, retired)

        with translate_store_errors("transfer videos", session_id=session_id):
            moved = self.resources.reassign_to_user(session_id, user_id)

        self._retire(session_id, user_id, moved)
        self.logger.info(
            "[MIGRATION] Migrated %d videos from %s to user %s",
            moved,
            mask_token(session_id),
            user_id,
        )
        return MigrationResult(session_id, user_id, moved, True)

    def _retire(self, session_id: str, user_id: int, migrated_count: int) -> None:
        with translate_store_errors("retire session", session_id=session_id):
            self.sessions.retire_anonymous(session_id, user_id, migrated_count, self.clock())

    def migrate_after_login(self, session_id: Optional[str], user_id: int) -> Optional[MigrationResult]:
        """
        Best-effort migration for the login/registration flow.

        Returns None when there is nothing to migrate or the migration
        failed; failures are logged and never block the login.
        """
        if not session_id:
            return None
        try:
            return self.migrate(session_id, user_id)
        except SessionError as e:
            self.logger.warning(
                "[MIGRATION] Skipped migration of %s to user %s: %s",
                mask_token(session_id),
                user_id,
                e,
            )
            return None
