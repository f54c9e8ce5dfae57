"""
Session Sweeper - reclaims abandoned anonymous sessions and their videos.

A session is abandoned when last_active_at is strictly older than the
inactivity threshold (ANONYMOUS_INACTIVE_DAYS, default 30). For each one:
1. Delete each owned video with its dependents, one transaction per video
2. Delete the session row last, and only if it is still inactive

A failure part-way through a session leaves the session row in place so the
next sweep picks it up again; the sweep carries on with the next session.

The scheduler runs run_cleanup() on a daemon timer, once at start and then
every SESSION_CLEANUP_INTERVAL_HOURS.

Usage:
    from vidlib.services.session_sweeper import SessionSweeper, SessionCleanupScheduler

    removed = sweeper.sweep()                    # default threshold
    summary = sweeper.run_cleanup()              # + expired user sessions

    scheduler = SessionCleanupScheduler(sweeper)
    scheduler.start()
    ...
    scheduler.stop()
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Optional, Callable, Dict, Any, List, Tuple

from vidlib.config import config
from vidlib.db import DatabaseError, now_utc
from vidlib.errors import PartialCascadeFailure, StoreUnavailable, translate_store_errors
from vidlib.utils.helpers import mask_token

_default_logger = logging.getLogger("vidlib.sweeper")


class SessionSweeper:
    """Deletes inactive anonymous sessions together with everything they own."""

    def __init__(
        self,
        sessions,
        resources,
        inactive_days: Optional[int] = None,
        batch_size: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.sessions = sessions
        self.resources = resources
        self.inactive_days = inactive_days if inactive_days is not None else config.ANONYMOUS_INACTIVE_DAYS
        self.batch_size = batch_size or config.SESSION_CLEANUP_BATCH_SIZE
        self.logger = logger or _default_logger
        self.clock = clock

    def cutoff_for(self, inactive_threshold_days: Optional[int] = None, now: Optional[datetime] = None) -> datetime:
        days = self.inactive_days if inactive_threshold_days is None else inactive_threshold_days
        return (now or self.clock()) - timedelta(days=days)

    def find_candidates(
        self,
        inactive_threshold_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """List every session a sweep would target, without deleting anything."""
        cutoff = self.cutoff_for(inactive_threshold_days, now)
        candidates = []
        with translate_store_errors("list inactive sessions"):
            for row in self._iter_inactive(cutoff):
                candidates.append(row)
        return candidates

    def sweep(
        self,
        inactive_threshold_days: Optional[int] = None,
        now: Optional[datetime] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Remove inactive anonymous sessions and return how many were removed.

        Raises:
            StoreUnavailable: Only if the inactive sessions cannot be listed at all
        """
        removed, _ = self._sweep(self.cutoff_for(inactive_threshold_days, now), stop_event)
        return removed

    def _iter_inactive(self, cutoff: datetime):
        after_id = 0
        while True:
            rows = self.sessions.list_inactive_anonymous(cutoff, self.batch_size, after_id=after_id)
            for row in rows:
                yield row
            if len(rows) < self.batch_size:
                return
            after_id = rows[-1]["id"]

    def _sweep(self, cutoff: datetime, stop_event: Optional[threading.Event]) -> Tuple[int, int]:
        removed = 0
        failures = 0
        self.logger.info("[SWEEP] Starting sweep, cutoff=%s", cutoff.isoformat())

        after_id = 0
        first_page = True
        while True:
            try:
                rows = self.sessions.list_inactive_anonymous(cutoff, self.batch_size, after_id=after_id)
            except DatabaseError as e:
                if first_page:
                    raise StoreUnavailable(f"list inactive sessions failed: {e}", original_error=e) from e
                # Later pages are retried on the next run
                self.logger.error("[SWEEP] Could not list further sessions: %s", e)
                failures += 1
                break
            first_page = False

            for row in rows:
                if stop_event is not None and stop_event.is_set():
                    self.logger.info("[SWEEP] Stop requested, ending sweep early")
                    return removed, failures
                try:
                    if self._remove_session(row["session_id"], cutoff):
                        removed += 1
                except PartialCascadeFailure as e:
                    failures += 1
                    self.logger.error("[SWEEP] %s", e)

            if len(rows) < self.batch_size:
                break
            after_id = rows[-1]["id"]

        self.logger.info("[SWEEP] Sweep complete: removed=%d failures=%d", removed, failures)
        return removed, failures

    def _remove_session(self, session_id: str, cutoff: datetime) -> bool:
        """
        Delete one session's videos then the session itself.

        Returns False if the session became active again and was kept.

        Raises:
            PartialCascadeFailure: If any step failed
        """
        try:
            videos = self.resources.list_by_session(session_id)
        except DatabaseError as e:
            raise PartialCascadeFailure(session_id, completed=0, original_error=e) from e

        deleted = 0
        for video in videos:
            try:
                self.resources.delete_with_dependents(video["id"])
            except DatabaseError as e:
                raise PartialCascadeFailure(session_id, video["id"], deleted, e) from e
            deleted += 1

        try:
            gone = self.sessions.delete_anonymous_if_inactive(session_id, cutoff)
        except DatabaseError as e:
            raise PartialCascadeFailure(session_id, completed=deleted, original_error=e) from e

        if gone:
            self.logger.info("[SWEEP] Removed %s (%d videos)", mask_token(session_id), deleted)
        else:
            self.logger.info("[SWEEP] Kept %s, active again", mask_token(session_id))
        return gone

    def run_cleanup(
        self,
        inactive_threshold_days: Optional[int] = None,
        now: Optional[datetime] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        Full cleanup pass: inactive anonymous sessions plus expired user sessions.

        Returns:
            Summary dict with anonymous_sessions_removed, user_sessions_removed,
            failures and duration_s
        """
        started = time.monotonic()
        now = now or self.clock()

        removed, failures = self._sweep(self.cutoff_for(inactive_threshold_days, now), stop_event)

        user_removed = 0
        try:
            user_removed = self.sessions.delete_expired_user_sessions(now)
        except DatabaseError as e:
            failures += 1
            self.logger.error("[SWEEP] Could not delete expired user sessions: %s", e)

        summary = {
            "anonymous_sessions_removed": removed,
            "user_sessions_removed": user_removed,
            "failures": failures,
            "duration_s": round(time.monotonic() - started, 3),
        }
        self.logger.info(
            "[SWEEP] Cleanup complete: anonymous=%d user=%d failures=%d in %.2fs",
            removed,
            user_removed,
            failures,
            summary["duration_s"],
        )
        return summary


# ─────────────────────────────────────────────────────────────
# Background Scheduler
# ─────────────────────────────────────────────────────────────

class SessionCleanupScheduler:
    """
    Runs SessionSweeper.run_cleanup() periodically on a daemon timer.

    stop() cancels the pending timer and signals a running cleanup to end
    after the session it is working on.
    """

    def __init__(
        self,
        sweeper: SessionSweeper,
        interval_seconds: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds or config.SESSION_CLEANUP_INTERVAL_SECONDS
        self.logger = logger or _default_logger
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._generation = 0
        self._stop_event = threading.Event()
        self.last_summary: Optional[Dict[str, Any]] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def start(self, initial_delay: float = 0) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            # A cleanup left over from before a stop() keeps its own event
            self._generation += 1
            self._stop_event = threading.Event()
            self._schedule_next(initial_delay)
        self.logger.info("[SWEEP] Cleanup scheduler started, interval=%ss", self.interval_seconds)

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.logger.info("[SWEEP] Cleanup scheduler stopped")

    def _schedule_next(self, delay: float) -> None:
        self._timer = threading.Timer(delay, self._run, args=(self._generation, self._stop_event))
        self._timer.daemon = True
        self._timer.start()

    def _run(self, generation: Optional[int] = None, stop_event: Optional[threading.Event] = None) -> None:
        if generation is None:
            generation = self._generation
        if stop_event is None:
            stop_event = self._stop_event
        try:
            self.last_summary = self.sweeper.run_cleanup(stop_event=stop_event)
        except StoreUnavailable as e:
            self.logger.error("[SWEEP] Scheduled cleanup skipped: %s", e)
        except Exception as e:
            # Keep the timer alive; the next run retries
            self.logger.exception("[SWEEP] Scheduled cleanup crashed: %s", e)
        finally:
            with self._lock:
                # Only the chain started by the latest start() reschedules
                if self._running and generation == self._generation and not stop_event.is_set():
                    self._schedule_next(self.interval_seconds)
