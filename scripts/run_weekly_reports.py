#!/usr/bin/env python3
"""Run the weekly report batch locally or from cron.

Usage:
    python scripts/run_weekly_reports.py
    python scripts/run_weekly_reports.py --now 2026-03-08T09:00:00+00:00

Generates, stores and emails reports for every eligible user for the window
ending at the most recent cadence tick. Per-user failures are reported but do
not fail the run. Exits 0 when the batch completes, 1 when it fails or is
skipped because another run holds the lock.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.services.reports import get_report_scheduler


def _parse_now(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the weekly report batch")
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="Reference time (ISO 8601); the window ends at the last tick before it",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        summary = get_report_scheduler().trigger(now=args.now)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    if summary is None:
        print("status=skipped (another run is in flight)", file=sys.stderr)
        return 1

    print(
        f"status={summary.status} "
        f"job_run_id={summary.job_run_id} "
        f"succeeded={summary.succeeded} "
        f"failed={summary.failed} "
        f"emails_sent={summary.emails_sent} "
        f"emails_skipped={summary.emails_skipped} "
        f"emails_failed={summary.emails_failed}"
    )
    for user_id, reason in summary.errors:
        print(f"failed user_id={user_id} reason={reason}", file=sys.stderr)
    if summary.error:
        print(f"error={summary.error}", file=sys.stderr)
    return 0 if summary.status == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
