"""
Database utilities for the vidlib backend.
Provides connection management and common query helpers.

All functions raise meaningful exceptions on failure - no silent failures.

Usage:
    from vidlib.db import transaction, fetch_one, query_one, Tables

    # Standalone query
    session = query_one(
        f"SELECT * FROM {Tables.ANONYMOUS_SESSIONS} WHERE session_id = %s",
        (session_id,),
    )

    # Transaction with automatic commit/rollback
    with transaction() as cur:
        cur.execute(f"UPDATE {Tables.VIDEOS} SET user_id = %s WHERE id = %s", (user_id, video_id))
        cur.execute(f"UPDATE {Tables.ANONYMOUS_SESSIONS} SET video_count = 0 WHERE session_id = %s", (sid,))
"""

import logging
from contextlib import contextmanager
from typing import Optional, Any, Dict, List
from datetime import datetime, timezone

import psycopg
from psycopg.rows import dict_row

from vidlib.config import config

logger = logging.getLogger("vidlib.db")


_APP_SCHEMA = config.APP_SCHEMA


# ─────────────────────────────────────────────────────────────
# Custom Exceptions
# ─────────────────────────────────────────────────────────────
class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseNotConfiguredError(DatabaseError):
    """Raised when database is not configured but an operation requires it."""
    def __init__(self, message: str = "Database is not configured"):
        super().__init__(message)


class DatabaseConnectionError(DatabaseError):
    """Raised when unable to connect to the database."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseQueryError(DatabaseError):
    """Raised when a query fails."""
    def __init__(self, message: str, query: str = None, original_error: Exception = None):
        super().__init__(message)
        self.query = query
        self.original_error = original_error


class DatabaseIntegrityError(DatabaseError):
    """Raised on constraint violations (unique, foreign key, check)."""
    def __init__(self, message: str, constraint: str = None, original_error: Exception = None):
        super().__init__(message)
        self.constraint = constraint
        self.original_error = original_error


# ─────────────────────────────────────────────────────────────
# Connection State
# ─────────────────────────────────────────────────────────────
USE_DB = config.HAS_DATABASE


# ─────────────────────────────────────────────────────────────
# Time Helpers
# ─────────────────────────────────────────────────────────────
def now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────
# Connection Management
# ─────────────────────────────────────────────────────────────
def _create_connection():
    """
    Create a new database connection.
    Internal function - raises exceptions on failure.
    """
    url = config.DATABASE_URL
    if not url:
        raise DatabaseNotConfiguredError("DATABASE_URL is not set")

    try:
        conn = psycopg.connect(
            url,
            connect_timeout=config.DB_CONNECT_TIMEOUT,
            row_factory=dict_row,
        )
        with conn.cursor() as cur:
            cur.execute(f"SET search_path TO {_APP_SCHEMA}, public;")
        return conn
    except psycopg.OperationalError as e:
        raise DatabaseConnectionError(f"Failed to connect to database: {e}", original_error=e)


@contextmanager
def transaction():
    """
    Context manager for database transactions.
    Automatically commits on success, rolls back on exception.
    Yields a cursor with dict_row factory.

    Raises:
        DatabaseNotConfiguredError: If database is not configured
        DatabaseConnectionError: If connection fails
        DatabaseQueryError: If a query fails
        DatabaseIntegrityError: On constraint violations
    """
    conn = _create_connection()
    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except psycopg.errors.UniqueViolation as e:
        conn.rollback()
        raise DatabaseIntegrityError(
            f"Unique constraint violation: {e}",
            constraint=getattr(e.diag, "constraint_name", None),
            original_error=e,
        )
    except psycopg.errors.ForeignKeyViolation as e:
        conn.rollback()
        raise DatabaseIntegrityError(
            f"Foreign key violation: {e}",
            constraint=getattr(e.diag, "constraint_name", None),
            original_error=e,
        )
    except psycopg.errors.CheckViolation as e:
        conn.rollback()
        raise DatabaseIntegrityError(
            f"Check constraint violation: {e}",
            constraint=getattr(e.diag, "constraint_name", None),
            original_error=e,
        )
    except psycopg.OperationalError as e:
        conn.rollback()
        raise DatabaseConnectionError(f"Lost database connection: {e}", original_error=e)
    except psycopg.Error as e:
        conn.rollback()
        raise DatabaseQueryError(f"Database error: {e}", original_error=e)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ─────────────────────────────────────────────────────────────
# Cursor Helpers (for use within transaction blocks)
# ─────────────────────────────────────────────────────────────
def fetch_one(cur) -> Optional[Dict[str, Any]]:
    """Fetch one row from cursor as dict. Returns None if no rows available."""
    row = cur.fetchone()
    if row is None:
        return None
    return dict(row)


def fetch_all(cur) -> List[Dict[str, Any]]:
    """Fetch all rows from cursor as list of dicts. Returns empty list if no rows."""
    return [dict(row) for row in cur.fetchall()]


# ─────────────────────────────────────────────────────────────
# Standalone Query Helpers (open their own transaction)
# ─────────────────────────────────────────────────────────────
def query_one(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """Execute a query and return one row as dict. Opens its own transaction."""
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


def query_all(sql: str, params: tuple = None) -> List[Dict[str, Any]]:
    """Execute a query and return all rows as list of dicts. Opens its own transaction."""
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_all(cur)


def execute(sql: str, params: tuple = None) -> int:
    """
    Execute a statement and return affected row count.
    Opens its own transaction.

    Usage:
        count = execute(f"DELETE FROM {Tables.USER_SESSIONS} WHERE expires_at < %s", (now_utc(),))
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return cur.rowcount


def execute_returning(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """Execute an INSERT/UPDATE with RETURNING clause. Opens its own transaction."""
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


# ─────────────────────────────────────────────────────────────
# Schema-aware Table References
# ─────────────────────────────────────────────────────────────
class Tables:
    """Table name constants with schema prefixes."""
    USERS = f"{_APP_SCHEMA}.users"
    USER_SESSIONS = f"{_APP_SCHEMA}.user_sessions"
    ANONYMOUS_SESSIONS = f"{_APP_SCHEMA}.anonymous_sessions"

    VIDEOS = f"{_APP_SCHEMA}.videos"
    COLLECTION_VIDEOS = f"{_APP_SCHEMA}.collection_videos"
    QA_CONVERSATIONS = f"{_APP_SCHEMA}.qa_conversations"
    EMBEDDINGS = f"{_APP_SCHEMA}.embeddings"


# ─────────────────────────────────────────────────────────────
# Startup
# ─────────────────────────────────────────────────────────────
def verify_connection() -> bool:
    """
    Test database connectivity.
    Returns True if connected, False otherwise. Does not raise.
    """
    if not USE_DB:
        return False
    try:
        result = query_one("SELECT 1 AS ok")
        return result is not None and result.get("ok") == 1
    except DatabaseError:
        return False


def init_db() -> bool:
    """
    Initialize database connection and verify connectivity.
    Called at app startup. Returns True if database is ready.

    Raises:
        DatabaseConnectionError: If database is configured but connection fails
    """
    if not USE_DB:
        logger.warning("[DB] DATABASE_URL not set - running without database")
        return False

    if not verify_connection():
        raise DatabaseConnectionError("Connection test query failed")

    logger.info("[DB] Database connection verified successfully")
    ensure_schema()
    return True


# Identity tables are owned by this service. The videos table is owned by the
# resource layer; only the ownership constraint is enforced from here. Each
# group commits on its own.
_SCHEMA_GROUPS = [
    ("anonymous sessions", [
        f"CREATE SCHEMA IF NOT EXISTS {_APP_SCHEMA}",
        f"""
        CREATE TABLE IF NOT EXISTS {Tables.ANONYMOUS_SESSIONS} (
            id SERIAL PRIMARY KEY,
            session_id TEXT NOT NULL UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_active_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            video_count INTEGER NOT NULL DEFAULT 0 CHECK (video_count >= 0),
            user_agent TEXT,
            ip_address TEXT,
            metadata JSONB NOT NULL DEFAULT '{{}}'::jsonb
        )
        """,
        f"""
        CREATE INDEX IF NOT EXISTS anonymous_sessions_last_active_idx
        ON {Tables.ANONYMOUS_SESSIONS} (last_active_at)
        """,
    ]),
    ("user sessions", [
        f"""
        CREATE TABLE IF NOT EXISTS {Tables.USER_SESSIONS} (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES {Tables.USERS}(id),
            session_token TEXT NOT NULL UNIQUE,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_active_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            user_agent TEXT,
            ip_address TEXT
        )
        """,
    ]),
    ("video ownership", [
        f"""
        CREATE INDEX IF NOT EXISTS videos_anonymous_session_idx
        ON {Tables.VIDEOS} (anonymous_session_id)
        """,
        f"""
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1 FROM pg_constraint
                WHERE conname = 'videos_owner_disjoint'
                  AND conrelid = '{Tables.VIDEOS}'::regclass
            ) THEN
                ALTER TABLE {Tables.VIDEOS}
                ADD CONSTRAINT videos_owner_disjoint
                CHECK ((user_id IS NULL) <> (anonymous_session_id IS NULL));
            END IF;
        END $$
        """,
    ]),
]


def ensure_schema() -> Dict[str, bool]:
    """
    Ensure the identity tables and the video ownership constraint exist.
    Idempotent; called at app startup after the connection is verified.

    Returns {group name: applied} so callers can tell which groups failed.
    """
    results = {}
    for name, statements in _SCHEMA_GROUPS:
        try:
            with transaction() as cur:
                for statement in statements:
                    cur.execute(statement)
            results[name] = True
        except DatabaseError as e:
            # Existing deployments may run with a role that cannot alter tables
            logger.warning("[DB] Could not ensure %s schema: %s", name, e)
            results[name] = False
    logger.info("[DB] Schema check: %s", results)
    return results


__all__ = [
    "USE_DB",
    "DatabaseError",
    "DatabaseNotConfiguredError",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseIntegrityError",
    "transaction",
    "now_utc",
    "fetch_one",
    "fetch_all",
    "query_one",
    "query_all",
    "execute",
    "execute_returning",
    "Tables",
    "verify_connection",
    "init_db",
    "ensure_schema",
]
