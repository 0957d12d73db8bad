"""Rebuild hourly/daily rollups from raw `usage_records`.

What this job does
------------------
- Picks the local-day range [--from, --to] in the configured TIMEZONE
  (defaults: earliest recorded day .. today).
- Deletes the rollup buckets inside that range, then replays every raw record
  in the range through the same additive reconciliation a sync uses.
- Runs in one transaction, so re-runs are safe and a failure leaves the old
  rollups untouched.

Use it after enabling pre-aggregation on an existing database, or to repair
rollups after manual edits to raw records.

CLI examples
------------
$ python -m ops.backfill_rollups --dry-run
$ python -m ops.backfill_rollups --from 2026-01-01 --to 2026-01-31 --granularity daily
"""
from __future__ import annotations

import argparse
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.db import SessionLocal
from app.services.rollups import RebuildPreview, rebuild_rollups


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rebuild usage rollups from raw usage records")
    parser.add_argument("--from", dest="start", type=_date, default=None, help="First local day (YYYY-MM-DD)")
    parser.add_argument("--to", dest="end", type=_date, default=None, help="Last local day (YYYY-MM-DD)")
    parser.add_argument(
        "--granularity",
        choices=["hourly", "daily", "both"],
        default="both",
        help="Which rollup table(s) to rebuild",
    )
    parser.add_argument("--dry-run", action="store_true", help="Only show what would be rebuilt")
    return parser


def run(db: Session, args: argparse.Namespace) -> int:
    result = rebuild_rollups(
        db,
        start_date=args.start,
        end_date=args.end,
        granularity=args.granularity,
        dry_run=args.dry_run,
    )
    if isinstance(result, RebuildPreview):
        print(
            f"[usageWatch] Dry run {result.start_date}..{result.end_date} ({result.granularity}): "
            f"{result.records} record(s) -> {result.buckets} bucket(s)"
        )
        for sample in result.samples:
            print(
                f"[usageWatch]   {sample['bucket_start']} {sample['route']} {sample['model']}: "
                f"{sample['records']} record(s)"
            )
        return 0

    db.commit()
    print(
        f"[usageWatch] Rebuilt {result.start_date}..{result.end_date} ({result.granularity}): "
        f"{result.records} record(s), deleted {result.deleted_buckets} bucket(s), "
        f"wrote {result.hourly_buckets} hourly / {result.daily_buckets} daily"
    )
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    db: Session = SessionLocal()
    try:
        return run(db, args)
    except (SQLAlchemyError, ValueError) as e:
        db.rollback()
        print(f"[usageWatch] Backfill failed: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
