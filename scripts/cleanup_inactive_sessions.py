#!/usr/bin/env python3
"""
Inactive Session Cleanup Script
-------------------------------
Deletes anonymous sessions that have been inactive longer than the threshold,
together with every video they own, plus expired registered sessions.

The API process runs the same cleanup on a timer; this script is for cron
setups with SESSION_CLEANUP_ENABLED=false or for one-off runs:
    0 3 * * * cd /path/to/vidlib && python scripts/cleanup_inactive_sessions.py >> /var/log/vidlib-cleanup.log 2>&1

Or manually with options:
    # Default threshold (ANONYMOUS_INACTIVE_DAYS, 30)
    python scripts/cleanup_inactive_sessions.py

    # Custom threshold
    python scripts/cleanup_inactive_sessions.py --days 60

    # Show what would be deleted
    python scripts/cleanup_inactive_sessions.py --dry-run --verbose

Exit codes: 0 ok, 1 some sessions failed (retried next run), 2 fatal error.

Environment variables:
    DATABASE_URL: PostgreSQL connection string
"""
import argparse
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def main():
    parser = argparse.ArgumentParser(
        description="Delete inactive anonymous sessions and their videos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Inactivity threshold in days (default: ANONYMOUS_INACTIVE_DAYS)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List sessions that would be deleted without deleting them",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print detailed output",
    )
    args = parser.parse_args()

    if args.days is not None and args.days < 0:
        parser.error("--days must be non-negative")

    start_time = datetime.now(timezone.utc)
    print(f"[{start_time.isoformat()}] Inactive Session Cleanup")
    print(f"  Mode: {'dry-run' if args.dry_run else 'apply'}")
    print()

    try:
        from vidlib.app import configure_logging
        from vidlib.services import build_default_services

        if args.verbose:
            configure_logging()

        sweeper = build_default_services().sweeper
        days = sweeper.inactive_days if args.days is None else args.days
        print(f"  Threshold: {days} days (cutoff {sweeper.cutoff_for(days).isoformat()})")

        if args.dry_run:
            candidates = sweeper.find_candidates(inactive_threshold_days=days)
            print(f"  Sessions to delete: {len(candidates)}")
            if args.verbose:
                for row in candidates:
                    print(
                        f"    {row['session_id']}  last_active={row['last_active_at']}  "
                        f"videos={row.get('video_count', 0)}"
                    )
            return

        summary = sweeper.run_cleanup(inactive_threshold_days=days)
        print(f"  Anonymous sessions removed: {summary['anonymous_sessions_removed']}")
        print(f"  User sessions removed:      {summary['user_sessions_removed']}")
        print(f"  Failures:                   {summary['failures']}")

        end_time = datetime.now(timezone.utc)
        print()
        print(f"[{end_time.isoformat()}] Cleanup completed in {summary['duration_s']:.1f}s")

        if summary["failures"] > 0:
            print(f"  WARNING: {summary['failures']} sessions failed and will be retried next run")
            sys.exit(1)

    except Exception as e:
        print(f"ERROR: Session cleanup failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(2)


if __name__ == "__main__":
    main()
