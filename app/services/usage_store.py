"""Append-only store of raw usage events.

`usage_records` is unique on (occurred_at, route, model). Inserts use
ON CONFLICT DO NOTHING, so re-syncing an overlapping window is a no-op for rows
already stored, and only rows that are actually new come back to the caller
(and on to the rollup reconciler).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.db import dialect_insert
from app.core.models import UsageRecord
from app.core.timebuckets import as_utc
from app.services.usage_payload import UsageEvent

log = logging.getLogger(__name__)

INSERT_CHUNK_SIZE = 500


@dataclass
class InsertOutcome:
    attempted: int
    inserted: List[UsageEvent] = field(default_factory=list)
    used_fallback_count: bool = False

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)

    @property
    def skipped(self) -> int:
        return max(0, self.attempted - self.inserted_count)


def record_to_event(row: UsageRecord) -> UsageEvent:
    return UsageEvent(
        occurred_at=as_utc(row.occurred_at),
        route=row.route,
        model=row.model,
        total_tokens=row.total_tokens or 0,
        input_tokens=row.input_tokens or 0,
        output_tokens=row.output_tokens or 0,
        reasoning_tokens=row.reasoning_tokens or 0,
        cached_tokens=row.cached_tokens or 0,
        total_requests=row.total_requests or 0,
        success_count=row.success_count or 0,
        failure_count=row.failure_count or 0,
        is_error=bool(row.is_error),
        raw=row.raw,
        synced_at=as_utc(row.synced_at) if row.synced_at else None,
    )


def events_synced_at(db: Session, synced_at: datetime) -> List[UsageEvent]:
    rows = db.execute(
        select(UsageRecord).where(UsageRecord.synced_at == synced_at)
    ).scalars().all()
    return [record_to_event(r) for r in rows]


def _key(occurred_at: datetime, route: str, model: str) -> tuple:
    return (as_utc(occurred_at), route, model)


def insert_batch(db: Session, events: Sequence[UsageEvent], synced_at: datetime) -> InsertOutcome:
    """Insert candidates, skipping existing keys. Does not commit.

    The returned `inserted` list holds only the rows this call created. Some
    drivers report no RETURNING rows for INSERT .. ON CONFLICT DO NOTHING; when
    a non-empty batch comes back empty, the rows stamped with this batch's
    `synced_at` are re-selected instead. That recount assumes no other sync
    used the same stamp; two simultaneous syncs sharing it would be overcounted.
    """
    outcome = InsertOutcome(attempted=len(events))
    if not events:
        return outcome

    by_key = {_key(*e.key): e for e in events}
    inserted: List[UsageEvent] = []
    unmatched = 0
    for start in range(0, len(events), INSERT_CHUNK_SIZE):
        rows = []
        for event in events[start:start + INSERT_CHUNK_SIZE]:
            row = event.to_row()
            row["synced_at"] = synced_at
            rows.append(row)
        stmt = dialect_insert(db, UsageRecord).values(rows)
        stmt = stmt.on_conflict_do_nothing(
            index_elements=[UsageRecord.occurred_at, UsageRecord.route, UsageRecord.model]
        ).returning(UsageRecord.occurred_at, UsageRecord.route, UsageRecord.model)
        for occurred_at, route, model in db.execute(stmt).all():
            event = by_key.get(_key(occurred_at, route, model))
            if event is None:
                unmatched += 1
            else:
                inserted.append(event)

    if unmatched or not inserted:
        fallback = events_synced_at(db, synced_at)
        if fallback:
            log.warning(
                "[sync] insert returned %d usable rows for %d candidates; counted %d rows by synced_at=%s",
                len(inserted), len(events), len(fallback), synced_at.isoformat(),
            )
            outcome.used_fallback_count = True
            inserted = [by_key.get(_key(*e.key), e) for e in fallback]

    for event in inserted:
        event.synced_at = synced_at
    outcome.inserted = inserted
    log.info(
        "[sync] raw insert: attempted=%d inserted=%d skipped=%d",
        outcome.attempted, outcome.inserted_count, outcome.skipped,
    )
    return outcome


def count_records(db: Session) -> int:
    return int(db.execute(select(func.count(UsageRecord.id))).scalar() or 0)


def delete_all_records(db: Session) -> int:
    """Wipe raw usage records (administrative reset). Does not commit."""
    result = db.execute(delete(UsageRecord))
    return int(result.rowcount or 0)
