"""
Session Store - persistence for anonymous and registered sessions.

Owns three tables:
- anonymous_sessions: pre-registration visitors and their cached video_count
- user_sessions: registered login sessions with an expiry
- users: consulted for existence only

All methods raise vidlib.db.DatabaseError subclasses on failure. Services
translate those into StoreUnavailable.

Usage:
    from vidlib.services.session_store import SessionStore

    store = SessionStore()
    row = store.get_anonymous("anon_1717171717171_0123456789abcdef01234567")
    store.set_video_count(row["session_id"], 2)
"""

import json
from datetime import datetime
from typing import Optional, Dict, Any, List

from vidlib.db import (
    DatabaseIntegrityError,
    Tables,
    execute,
    execute_returning,
    query_all,
    query_one,
)
from vidlib.errors import SessionCollision


class SessionStore:
    """PostgreSQL-backed session store."""

    # ─────────────────────────────────────────────────────────────
    # Anonymous Sessions
    # ─────────────────────────────────────────────────────────────

    def get_anonymous(self, session_id: str) -> Optional[Dict[str, Any]]:
        return query_one(
            f"""
            SELECT id, session_id, created_at, last_active_at, video_count,
                   user_agent, ip_address, metadata
            FROM {Tables.ANONYMOUS_SESSIONS}
            WHERE session_id = %s
            """,
            (session_id,),
        )

    def insert_anonymous(
        self,
        session_id: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Persist a new anonymous session with video_count = 0.

        Raises:
            SessionCollision: If the id already exists (the row is never overwritten)
        """
        try:
            return execute_returning(
                f"""
                INSERT INTO {Tables.ANONYMOUS_SESSIONS}
                    (session_id, created_at, last_active_at, video_count, user_agent, ip_address)
                VALUES (%s, NOW(), NOW(), 0, %s, %s)
                RETURNING id, session_id, created_at, last_active_at, video_count,
                          user_agent, ip_address, metadata
                """,
                (session_id, user_agent, ip_address),
            )
        except DatabaseIntegrityError as e:
            raise SessionCollision(session_id) from e

    def touch_anonymous(self, session_id: str) -> bool:
        """Refresh last_active_at. Returns False if the session does not exist."""
        count = execute(
            f"UPDATE {Tables.ANONYMOUS_SESSIONS} SET last_active_at = NOW() WHERE session_id = %s",
            (session_id,),
        )
        return count > 0

    def set_video_count(self, session_id: str, count: int) -> bool:
        """Store a recomputed video_count and refresh last_active_at."""
        updated = execute(
            f"""
            UPDATE {Tables.ANONYMOUS_SESSIONS}
            SET video_count = %s, last_active_at = NOW()
            WHERE session_id = %s
            """,
            (count, session_id),
        )
        return updated > 0

    def retire_anonymous(
        self,
        session_id: str,
        user_id: int,
        migrated_count: int,
        migrated_at: datetime,
    ) -> bool:
        """
        Zero the counter of a migrated session and record provenance in metadata.
        The row itself is kept.
        """
        provenance = {
            "migrated_to_user_id": user_id,
            "migrated_at": migrated_at.isoformat(),
            "migrated_count": migrated_count,
        }
        updated = execute(
            f"""
            UPDATE {Tables.ANONYMOUS_SESSIONS}
            SET video_count = 0,
                metadata = COALESCE(metadata, '{{}}'::jsonb) || %s::jsonb
            WHERE session_id = %s
            """,
            (json.dumps(provenance), session_id),
        )
        return updated > 0

    def list_inactive_anonymous(
        self,
        cutoff: datetime,
        limit: int,
        after_id: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Sessions with last_active_at strictly before cutoff, in id order.
        Pass the last seen id as after_id to page through.
        """
        return query_all(
            f"""
            SELECT id, session_id, last_active_at, video_count
            FROM {Tables.ANONYMOUS_SESSIONS}
            WHERE last_active_at < %s AND id > %s
            ORDER BY id ASC
            LIMIT %s
            """,
            (cutoff, after_id, limit),
        )

    def delete_anonymous_if_inactive(self, session_id: str, cutoff: datetime) -> bool:
        """Delete the session only if it has not been touched since cutoff."""
        count = execute(
            f"""
            DELETE FROM {Tables.ANONYMOUS_SESSIONS}
            WHERE session_id = %s AND last_active_at < %s
            """,
            (session_id, cutoff),
        )
        return count > 0

    def delete_empty_anonymous(self, session_id: str) -> bool:
        """Delete a session that owns no videos (an id issued moments before login)."""
        count = execute(
            f"""
            DELETE FROM {Tables.ANONYMOUS_SESSIONS} s
            WHERE s.session_id = %s
              AND s.video_count = 0
              AND NOT EXISTS (
                  SELECT 1 FROM {Tables.VIDEOS} v WHERE v.anonymous_session_id = s.session_id
              )
            """,
            (session_id,),
        )
        return count > 0

    def list_anonymous(self, limit: int, after_id: int = 0) -> List[Dict[str, Any]]:
        """Page through all anonymous sessions in id order (used by the count audit)."""
        return query_all(
            f"""
            SELECT id, session_id, video_count, last_active_at
            FROM {Tables.ANONYMOUS_SESSIONS}
            WHERE id > %s
            ORDER BY id ASC
            LIMIT %s
            """,
            (after_id, limit),
        )

    # ─────────────────────────────────────────────────────────────
    # Registered Sessions
    # ─────────────────────────────────────────────────────────────

    def get_user_session(self, session_token: str) -> Optional[Dict[str, Any]]:
        return query_one(
            f"""
            SELECT id, user_id, session_token, expires_at, created_at, last_active_at
            FROM {Tables.USER_SESSIONS}
            WHERE session_token = %s
            """,
            (session_token,),
        )

    def insert_user_session(
        self,
        session_token: str,
        user_id: int,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        return execute_returning(
            f"""
            INSERT INTO {Tables.USER_SESSIONS}
                (user_id, session_token, expires_at, created_at, last_active_at, user_agent, ip_address)
            VALUES (%s, %s, %s, NOW(), NOW(), %s, %s)
            RETURNING id, user_id, session_token, expires_at, created_at, last_active_at
            """,
            (user_id, session_token, expires_at, user_agent, ip_address),
        )

    def touch_user_session(self, session_token: str) -> bool:
        count = execute(
            f"UPDATE {Tables.USER_SESSIONS} SET last_active_at = NOW() WHERE session_token = %s",
            (session_token,),
        )
        return count > 0

    def delete_user_session(self, session_token: str) -> bool:
        count = execute(
            f"DELETE FROM {Tables.USER_SESSIONS} WHERE session_token = %s",
            (session_token,),
        )
        return count > 0

    def delete_user_sessions_for_user(self, user_id: int, except_token: Optional[str] = None) -> int:
        """Delete every session of a user, optionally keeping one."""
        if except_token:
            return execute(
                f"""
                DELETE FROM {Tables.USER_SESSIONS}
                WHERE user_id = %s AND session_token != %s
                """,
                (user_id, except_token),
            )
        return execute(
            f"DELETE FROM {Tables.USER_SESSIONS} WHERE user_id = %s",
            (user_id,),
        )

    def delete_expired_user_sessions(self, now: datetime) -> int:
        return execute(
            f"DELETE FROM {Tables.USER_SESSIONS} WHERE expires_at < %s",
            (now,),
        )

    # ─────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────

    def user_exists(self, user_id: int) -> bool:
        row = query_one(
            f"SELECT 1 AS found FROM {Tables.USERS} WHERE id = %s",
            (user_id,),
        )
        return row is not None
