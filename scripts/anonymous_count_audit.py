#!/usr/bin/env python3
"""
Anonymous Count Audit Script
----------------------------
Compares each anonymous session's cached video_count with the number of
videos it actually owns and repairs any drift.

The counter is recomputed on every video save, so drift only survives on
sessions that stopped saving. Run daily via cron:
    0 4 * * * cd /path/to/vidlib && python scripts/anonymous_count_audit.py >> /var/log/vidlib-count-audit.log 2>&1

Or manually with options:
    # Detect only
    python scripts/anonymous_count_audit.py --dry-run

    # Check one session
    python scripts/anonymous_count_audit.py --session anon_...

Exit codes: 0 ok, 1 some sessions could not be checked, 2 fatal error.

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
        description="Audit and repair anonymous session video counters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Detect drift but don't repair it",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of sessions to check (default: all)",
    )
    parser.add_argument(
        "--session",
        type=str,
        help="Check/repair a single anonymous session id",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print every drifted session",
    )
    args = parser.parse_args()

    start_time = datetime.now(timezone.utc)
    print(f"[{start_time.isoformat()}] Anonymous Count Audit")
    print(f"  Mode: {'dry-run' if args.dry_run else 'apply'}")
    print()

    try:
        from vidlib.services import build_default_services

        quota = build_default_services().quota

        if args.session:
            report = quota.reconcile(args.session, dry_run=args.dry_run)
            print(f"  Session: {report['session_id']}")
            print(f"  Stored:  {report['stored']}")
            print(f"  Actual:  {report['actual']}")
            print(f"  Drift:   {report['drift']:+d}")
            print(f"  Repaired: {report['repaired']}")
            return

        summary = quota.audit(limit=args.limit, dry_run=args.dry_run)
        print(f"  Sessions checked: {summary['sessions_checked']}")
        print(f"  Drifts found:     {summary['drifts_found']}")
        print(f"  Repairs applied:  {summary['repairs_applied']}")
        if args.verbose:
            for drift in summary["drifts"]:
                print(f"    {drift['session_id']}: {drift['stored']} -> {drift['actual']} ({drift['drift']:+d})")

        end_time = datetime.now(timezone.utc)
        print()
        print(f"[{end_time.isoformat()}] Audit completed in {summary['duration_s']:.1f}s")

        if summary["failed_count"] > 0:
            print(f"  WARNING: {summary['failed_count']} sessions could not be checked")
            sys.exit(1)

    except Exception as e:
        print(f"ERROR: Count audit failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(2)


if __name__ == "__main__":
    main()
