"""Hourly/daily rollups of raw usage records.

`reconcile()` folds a batch of *newly inserted* raw events into both rollup
tables with one additive upsert per table:

    INSERT ... ON CONFLICT (bucket_start, route, model)
    DO UPDATE SET col = table.col + excluded.col

The add happens in the database, so two syncs touching the same bucket never
lose each other's contribution. Nothing here commits; callers own the
transaction.

`rebuild_rollups()` is the offline counterpart used by ops/backfill_rollups.py.
It recomputes a range of local days from raw records.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Literal, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.db import dialect_insert
from app.core.models import COUNTER_FIELDS, UsageDailyAgg, UsageHourlyAgg, UsageRecord
from app.core.timebuckets import (
    as_utc,
    day_bucket,
    day_end,
    day_start,
    hour_bucket,
    local_date,
    reference_tz,
)
from app.services.usage_payload import UsageEvent
from app.services.usage_store import record_to_event

log = logging.getLogger(__name__)

Granularity = Literal["hourly", "daily", "both"]

REBUILD_BATCH_SIZE = 5000
PREVIEW_SAMPLES = 10

BucketKey = tuple  # (bucket_start, route, model)


@dataclass
class ReconcileOutcome:
    hourly_buckets: int = 0
    daily_buckets: int = 0


@dataclass
class RebuildPreview:
    start_date: date
    end_date: date
    granularity: str
    records: int = 0
    buckets: int = 0
    samples: List[dict] = field(default_factory=list)


@dataclass
class RebuildOutcome:
    start_date: date
    end_date: date
    granularity: str
    records: int = 0
    deleted_buckets: int = 0
    hourly_buckets: int = 0
    daily_buckets: int = 0


def bucket_deltas(
    events: Iterable[UsageEvent],
    truncate: Callable[[datetime], datetime],
) -> Dict[BucketKey, Dict[str, int]]:
    """Sum counters per (bucket_start, route, model)."""
    deltas: Dict[BucketKey, Dict[str, int]] = defaultdict(lambda: dict.fromkeys(COUNTER_FIELDS, 0))
    for event in events:
        acc = deltas[(truncate(event.occurred_at), event.route, event.model)]
        for name, value in event.counters().items():
            acc[name] += value
    return dict(deltas)


def _upsert_additive(db: Session, model, deltas: Dict[BucketKey, Dict[str, int]], now: datetime) -> int:
    if not deltas:
        return 0
    rows = []
    # stable key order keeps concurrent writers locking buckets in the same sequence
    for key in sorted(deltas, key=lambda k: (as_utc(k[0]), k[1], k[2])):
        bucket_start, route, model_name = key
        row = {"bucket_start": bucket_start, "route": route, "model": model_name,
               "created_at": now, "updated_at": now}
        row.update(deltas[key])
        rows.append(row)

    stmt = dialect_insert(db, model).values(rows)
    set_ = {name: getattr(model, name) + getattr(stmt.excluded, name) for name in COUNTER_FIELDS}
    set_["updated_at"] = stmt.excluded.updated_at
    stmt = stmt.on_conflict_do_update(
        index_elements=[model.bucket_start, model.route, model.model],
        set_=set_,
    )
    db.execute(stmt)
    return len(rows)


def reconcile(
    db: Session,
    events: Sequence[UsageEvent],
    now: datetime | None = None,
    granularity: Granularity = "both",
) -> ReconcileOutcome:
    """Add the counters of `events` into the rollup tables. Does not commit."""
    outcome = ReconcileOutcome()
    if not events:
        return outcome
    now = now or datetime.now(timezone.utc)
    tz = reference_tz()

    if granularity in ("hourly", "both"):
        hourly = bucket_deltas(events, lambda ts: hour_bucket(ts, tz))
        outcome.hourly_buckets = _upsert_additive(db, UsageHourlyAgg, hourly, now)
    if granularity in ("daily", "both"):
        daily = bucket_deltas(events, lambda ts: day_bucket(ts, tz))
        outcome.daily_buckets = _upsert_additive(db, UsageDailyAgg, daily, now)

    log.info(
        "[rollups] reconciled events=%d hourly_buckets=%d daily_buckets=%d",
        len(events), outcome.hourly_buckets, outcome.daily_buckets,
    )
    return outcome


def delete_all_rollups(db: Session) -> int:
    """Wipe both rollup tables (administrative reset). Does not commit."""
    deleted = 0
    for model in (UsageHourlyAgg, UsageDailyAgg):
        deleted += int(db.execute(delete(model)).rowcount or 0)
    return deleted


# ---------- Rebuild (backfill) ----------

def _tables(granularity: str) -> list:
    if granularity == "hourly":
        return [UsageHourlyAgg]
    if granularity == "daily":
        return [UsageDailyAgg]
    if granularity == "both":
        return [UsageHourlyAgg, UsageDailyAgg]
    raise ValueError(f"granularity must be hourly, daily or both (got {granularity!r})")


def default_range(db: Session, today: date | None = None) -> tuple[date, date]:
    """Earliest recorded local day through today."""
    tz = reference_tz()
    end = today or local_date(datetime.now(timezone.utc), tz)
    earliest = db.execute(select(func.min(UsageRecord.occurred_at))).scalar()
    start = local_date(earliest, tz) if earliest is not None else end
    return start, end


def _iter_range(db: Session, since: datetime, until: datetime) -> Iterable[UsageEvent]:
    stmt = (
        select(UsageRecord)
        .where(UsageRecord.occurred_at >= since, UsageRecord.occurred_at <= until)
        .order_by(UsageRecord.occurred_at.asc(), UsageRecord.id.asc())
        .execution_options(yield_per=REBUILD_BATCH_SIZE)
    )
    for row in db.execute(stmt).scalars():
        yield record_to_event(row)


def rebuild_rollups(
    db: Session,
    start_date: date | None = None,
    end_date: date | None = None,
    granularity: Granularity = "both",
    dry_run: bool = False,
    now: datetime | None = None,
) -> RebuildPreview | RebuildOutcome:
    """Recompute rollups for local days [start_date, end_date] from raw records.

    Existing buckets in the range are deleted first, then every raw record in
    the range is replayed through `reconcile()`, so running it twice gives the
    same totals. With `dry_run=True` nothing is written; the preview lists how
    many buckets would be produced plus a few samples. Does not commit.
    """
    tables = _tables(granularity)
    default_start, default_end = default_range(db)
    start_date = start_date or default_start
    end_date = end_date or default_end
    if end_date < start_date:
        raise ValueError(f"end date {end_date} is before start date {start_date}")

    tz = reference_tz()
    since, until = day_start(start_date, tz), day_end(end_date, tz)
    events = list(_iter_range(db, since, until))

    if dry_run:
        truncate = (lambda ts: hour_bucket(ts, tz)) if granularity == "hourly" else (lambda ts: day_bucket(ts, tz))
        counts: Dict[BucketKey, int] = defaultdict(int)
        for event in events:
            counts[(truncate(event.occurred_at), event.route, event.model)] += 1
        preview = RebuildPreview(start_date, end_date, granularity, records=len(events), buckets=len(counts))
        for key in sorted(counts, key=lambda k: (as_utc(k[0]), k[1], k[2]))[:PREVIEW_SAMPLES]:
            preview.samples.append({
                "bucket_start": as_utc(key[0]).isoformat(),
                "route": key[1],
                "model": key[2],
                "records": counts[key],
            })
        return preview

    outcome = RebuildOutcome(start_date, end_date, granularity, records=len(events))
    for model in tables:
        result = db.execute(
            delete(model).where(model.bucket_start >= since, model.bucket_start <= until)
        )
        outcome.deleted_buckets += int(result.rowcount or 0)

    for chunk_start in range(0, len(events), REBUILD_BATCH_SIZE):
        chunk = events[chunk_start:chunk_start + REBUILD_BATCH_SIZE]
        done = reconcile(db, chunk, now=now, granularity=granularity)
        outcome.hourly_buckets += done.hourly_buckets
        outcome.daily_buckets += done.daily_buckets

    log.info(
        "[rollups] rebuilt %s..%s (%s): records=%d deleted=%d",
        start_date, end_date, granularity, outcome.records, outcome.deleted_buckets,
    )
    return outcome
