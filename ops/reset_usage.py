"""Wipe raw usage records and rollups (development databases only).

Usage
-----
$ python -m ops.reset_usage --yes
"""
from __future__ import annotations

import argparse

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import SessionLocal
from app.services.rollups import delete_all_rollups
from app.services.usage_store import delete_all_records


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Delete all usage records and rollup buckets")
    parser.add_argument("--yes", action="store_true", help="Confirm deletion")
    args = parser.parse_args(argv)

    if settings.is_production:
        print("[usageWatch] Refusing to reset: APP_ENV=production")
        return 1
    if not args.yes:
        print("[usageWatch] Nothing deleted; pass --yes to confirm")
        return 1

    db: Session = SessionLocal()
    try:
        records = delete_all_records(db)
        buckets = delete_all_rollups(db)
        db.commit()
        print(f"[usageWatch] Deleted {records} usage record(s) and {buckets} rollup bucket(s)")
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
