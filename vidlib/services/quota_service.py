"""
Quota Service - caps how many videos an anonymous session may own.

anonymous_sessions.video_count is a cached value that should equal the
number of videos whose anonymous_session_id points at the session. Every
write recomputes it from the videos table (drift correction) instead of
incrementing, so lost updates from concurrent creates converge on the next
write.

Registered users are never checked here.

Usage:
    from vidlib.services.quota_service import QuotaService

    if quota.has_reached_limit(session_id):
        ...  # 403 ANONYMOUS_LIMIT_REACHED
    video = resources.create_video(...)
    quota.increment_on_create(session_id)

    # Cron / admin
    summary = quota.audit(dry_run=True)
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from vidlib.config import config
from vidlib.errors import SessionNotFound, StoreUnavailable, translate_store_errors
from vidlib.utils.helpers import mask_token

_default_logger = logging.getLogger("vidlib.quota")


@dataclass(frozen=True)
class QuotaUsage:
    count: int
    limit: int
    remaining: int
    at_limit: bool
    corrected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class QuotaService:
    """Quota checks and counter drift repair for anonymous sessions."""

    def __init__(
        self,
        sessions,
        resources,
        limit: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.sessions = sessions
        self.resources = resources
        self.limit = limit if limit is not None else config.ANONYMOUS_VIDEO_LIMIT
        self.logger = logger or _default_logger

    def _load(self, session_id: str) -> Dict[str, Any]:
        with translate_store_errors("load anonymous session", session_id=session_id):
            row = self.sessions.get_anonymous(session_id)
        if row is None:
            raise SessionNotFound(session_id)
        return row

    # ─────────────────────────────────────────────────────────────
    # Enforcement
    # ─────────────────────────────────────────────────────────────

    def has_reached_limit(self, session_id: str, limit: Optional[int] = None) -> bool:
        """
        True when the stored count is at or above the limit.

        Raises:
            SessionNotFound: If the session does not exist
            StoreUnavailable: On database failure
        """
        limit = self.limit if limit is None else limit
        row = self._load(session_id)
        return int(row.get("video_count") or 0) >= limit

    def increment_on_create(self, session_id: str) -> int:
        """
        Record that a video was created for session_id.

        Recomputes the true count from the videos table and stores it, which
        also refreshes last_active_at. Returns the stored count.
        """
        row = self._load(session_id)
        with translate_store_errors("recount videos", session_id=session_id):
            actual = self.resources.count_by_session(session_id)
            self.sessions.set_video_count(session_id, actual)

        stored = int(row.get("video_count") or 0)
        if actual != stored + 1:
            self.logger.info(
                "[QUOTA] Corrected count for %s: stored=%d actual=%d",
                mask_token(session_id),
                stored,
                actual,
            )
        return actual

    # ─────────────────────────────────────────────────────────────
    # Read + Repair
    # ─────────────────────────────────────────────────────────────

    def reconcile(self, session_id: str, dry_run: bool = False) -> Dict[str, Any]:
        """
        Compare the cached counter with the real video count and repair it.
        Idempotent: a session without drift is left alone.

        Returns:
            Dict with stored, actual, drift and repaired
        """
        row = self._load(session_id)
        stored = int(row.get("video_count") or 0)
        with translate_store_errors("reconcile count", session_id=session_id):
            actual = self.resources.count_by_session(session_id)

        repaired = False
        if actual != stored and not dry_run:
            with translate_store_errors("repair count", session_id=session_id):
                self.sessions.set_video_count(session_id, actual)
            repaired = True
            self.logger.info(
                "[QUOTA] Repaired count for %s: %d -> %d",
                mask_token(session_id),
                stored,
                actual,
            )

        return {
            "session_id": session_id,
            "stored": stored,
            "actual": actual,
            "drift": actual - stored,
            "repaired": repaired,
        }

    def get_usage(self, session_id: str, limit: Optional[int] = None) -> QuotaUsage:
        """Drift-corrected usage for display (count endpoint, /api/me)."""
        limit = self.limit if limit is None else limit
        report = self.reconcile(session_id)
        count = report["actual"]
        return QuotaUsage(
            count=count,
            limit=limit,
            remaining=max(0, limit - count),
            at_limit=count >= limit,
            corrected=report["repaired"],
        )

    def audit(self, limit: Optional[int] = None, dry_run: bool = False, batch_size: int = 500) -> Dict[str, Any]:
        """
        Scan anonymous sessions and repair counters that drifted.

        Args:
            limit: Stop after this many sessions (None = all)
            dry_run: Detect only, do not write
            batch_size: Page size for the session scan

        Returns:
            Summary dict with sessions_checked, drifts_found, repairs_applied,
            failed_count, duration_s and the individual drifts
        """
        started = time.monotonic()
        summary = {
            "dry_run": dry_run,
            "sessions_checked": 0,
            "drifts_found": 0,
            "repairs_applied": 0,
            "failed_count": 0,
            "drifts": [],
        }

        after_id = 0
        while limit is None or summary["sessions_checked"] < limit:
            page_size = batch_size if limit is None else min(batch_size, limit - summary["sessions_checked"])
            with translate_store_errors("list anonymous sessions"):
                rows = self.sessions.list_anonymous(page_size, after_id=after_id)
            if not rows:
                break

            for row in rows:
                after_id = row["id"]
                summary["sessions_checked"] += 1
                session_id = row["session_id"]
                stored = int(row.get("video_count") or 0)
                try:
                    with translate_store_errors("audit count", session_id=session_id):
                        actual = self.resources.count_by_session(session_id)
                        if actual == stored:
                            continue
                        summary["drifts_found"] += 1
                        if not dry_run:
                            self.sessions.set_video_count(session_id, actual)
                            summary["repairs_applied"] += 1
                except StoreUnavailable as e:
                    summary["failed_count"] += 1
                    self.logger.error("[QUOTA] Audit failed for %s: %s", mask_token(session_id), e)
                    continue

                summary["drifts"].append({
                    "session_id": session_id,
                    "stored": stored,
                    "actual": actual,
                    "drift": actual - stored,
                })

            if len(rows) < page_size:
                break

        summary["duration_s"] = round(time.monotonic() - started, 3)
        self.logger.info(
            "[QUOTA] Audit complete: checked=%d drifts=%d repaired=%d failed=%d dry_run=%s",
            summary["sessions_checked"],
            summary["drifts_found"],
            summary["repairs_applied"],
            summary["failed_count"],
            dry_run,
        )
        return summary
