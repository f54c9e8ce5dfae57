"""
Resource Store - the narrow slice of the video layer this package touches.

Videos are owned by exactly one of users.id (user_id) or
anonymous_sessions.session_id (anonymous_session_id). Rows that hang off a
video are described as data in VIDEO_DEPENDENTS, in the order they must be
deleted. Kinds with an owner_column carry the video's user_id and are moved
along with the video on migration.

Usage:
    from vidlib.services.resource_store import ResourceStore

    store = ResourceStore()
    store.count_by_session(session_id)
    store.reassign_to_user(session_id, user_id)
    store.delete_with_dependents(video_id)
"""

from collections import namedtuple
from typing import Optional, Dict, Any, List, Tuple

from vidlib.db import Tables, fetch_all, fetch_one, query_all, query_one, transaction

DependentKind = namedtuple("DependentKind", ["table", "video_column", "owner_column"])

# Deletion order for rows referencing videos.id
VIDEO_DEPENDENTS: Tuple[DependentKind, ...] = (
    DependentKind(Tables.COLLECTION_VIDEOS, "video_id", None),
    DependentKind(Tables.QA_CONVERSATIONS, "video_id", "user_id"),
    DependentKind(Tables.EMBEDDINGS, "video_id", "user_id"),
)


class ResourceStore:
    """PostgreSQL-backed access to videos and their dependents."""

    def __init__(self, dependents: Tuple[DependentKind, ...] = VIDEO_DEPENDENTS):
        self.dependents = dependents

    def list_by_session(self, session_id: str) -> List[Dict[str, Any]]:
        return query_all(
            f"""
            SELECT id, title, created_at
            FROM {Tables.VIDEOS}
            WHERE anonymous_session_id = %s
            ORDER BY id ASC
            """,
            (session_id,),
        )

    def count_by_session(self, session_id: str) -> int:
        row = query_one(
            f"SELECT COUNT(*) AS count FROM {Tables.VIDEOS} WHERE anonymous_session_id = %s",
            (session_id,),
        )
        return int(row.get("count", 0) or 0) if row else 0

    def reassign_to_user(self, session_id: str, user_id: int) -> int:
        """
        Move every video owned by session_id to user_id in one transaction.

        The WHERE anonymous_session_id guard makes a repeated or concurrent
        call move nothing. Returns the number of videos moved.
        """
        with transaction() as cur:
            for kind in self.dependents:
                if not kind.owner_column:
                    continue
                cur.execute(
                    f"""
                    UPDATE {kind.table}
                    SET {kind.owner_column} = %s
                    WHERE {kind.video_column} IN (
                        SELECT id FROM {Tables.VIDEOS} WHERE anonymous_session_id = %s
                    )
                    """,
                    (user_id, session_id),
                )
            cur.execute(
                f"""
                UPDATE {Tables.VIDEOS}
                SET user_id = %s, anonymous_session_id = NULL
                WHERE anonymous_session_id = %s
                RETURNING id
                """,
                (user_id, session_id),
            )
            moved = fetch_all(cur)
        return len(moved)

    def delete_with_dependents(self, video_id: int) -> None:
        """Delete one video and its dependent rows in one transaction."""
        with transaction() as cur:
            for kind in self.dependents:
                cur.execute(
                    f"DELETE FROM {kind.table} WHERE {kind.video_column} = %s",
                    (video_id,),
                )
            cur.execute(f"DELETE FROM {Tables.VIDEOS} WHERE id = %s", (video_id,))

    def create_video(
        self,
        title: str,
        source_url: Optional[str] = None,
        user_id: Optional[int] = None,
        anonymous_session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert a video owned by exactly one of user_id or anonymous_session_id."""
        if (user_id is None) == (anonymous_session_id is None):
            raise ValueError("video needs exactly one owner")

        with transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO {Tables.VIDEOS}
                    (title, source_url, user_id, anonymous_session_id, created_at)
                VALUES (%s, %s, %s, %s, NOW())
                RETURNING id, title, source_url, user_id, anonymous_session_id, created_at
                """,
                (title, source_url, user_id, anonymous_session_id),
            )
            return fetch_one(cur)
