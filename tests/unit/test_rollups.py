from collections import defaultdict
from datetime import date

from sqlalchemy import func, select

from app.core.models import COUNTER_FIELDS, UsageDailyAgg, UsageHourlyAgg
from app.core.timebuckets import day_bucket
from app.services.rollups import RebuildOutcome, RebuildPreview, rebuild_rollups, reconcile
from app.services.usage_payload import parse_usage_payload
from app.services.usage_store import insert_batch
from tests.helpers import detail, snapshot, utc


def _events(*entries):
    return parse_usage_payload(snapshot(*entries), synced_at=utc(2026, 3, 2)).events


def _rows(db, model):
    rows = db.execute(select(model).order_by(model.bucket_start, model.route, model.model)).scalars().all()
    return {(r.bucket_start.replace(tzinfo=None), r.route, r.model): {c: getattr(r, c) for c in COUNTER_FIELDS} for r in rows}


def _sums(db, model):
    return db.execute(select(*[func.sum(getattr(model, c)) for c in COUNTER_FIELDS])).one()


BATCH_A = (
    ("openai", "gpt-4o", detail("2026-03-01T01:10:00Z", input_tokens=100, output_tokens=10)),
    ("openai", "gpt-4o", detail("2026-03-01T01:50:00Z", input_tokens=50, cached_tokens=5, failed=True)),
    ("claude", "sonnet", detail("2026-03-01T17:00:00Z", output_tokens=7)),
)
BATCH_B = (
    ("openai", "gpt-4o", detail("2026-03-01T01:20:00Z", input_tokens=1, output_tokens=1)),
    ("claude", "sonnet", detail("2026-03-01T15:59:00Z", reasoning_tokens=3)),
)


def test_hour_and_day_buckets_use_reference_timezone(db):
    reconcile(db, _events(*BATCH_A))
    db.commit()

    hourly = _rows(db, UsageHourlyAgg)
    assert set(hourly) == {
        (utc(2026, 3, 1, 1).replace(tzinfo=None), "openai", "gpt-4o"),
        (utc(2026, 3, 1, 17).replace(tzinfo=None), "claude", "sonnet"),
    }
    gpt = hourly[(utc(2026, 3, 1, 1).replace(tzinfo=None), "openai", "gpt-4o")]
    assert gpt["input_tokens"] == 150
    assert gpt["total_requests"] == 2
    assert gpt["failure_count"] == 1

    # 17:00Z is 01:00 on March 2nd in Asia/Shanghai, so it opens a new local day
    daily = _rows(db, UsageDailyAgg)
    assert (utc(2026, 2, 28, 16).replace(tzinfo=None), "openai", "gpt-4o") in daily
    assert (utc(2026, 3, 1, 16).replace(tzinfo=None), "claude", "sonnet") in daily


def test_batches_add_up_in_any_order(db):
    reconcile(db, _events(*BATCH_A))
    reconcile(db, _events(*BATCH_B))
    db.commit()
    forward = (_rows(db, UsageHourlyAgg), _rows(db, UsageDailyAgg))

    for model in (UsageHourlyAgg, UsageDailyAgg):
        db.query(model).delete()
    db.commit()

    reconcile(db, _events(*BATCH_B))
    reconcile(db, _events(*BATCH_A))
    db.commit()
    backward = (_rows(db, UsageHourlyAgg), _rows(db, UsageDailyAgg))

    assert forward == backward
    both = _rows(db, UsageHourlyAgg)[(utc(2026, 3, 1, 1).replace(tzinfo=None), "openai", "gpt-4o")]
    assert both["input_tokens"] == 151
    assert both["total_requests"] == 3


def test_hourly_and_daily_totals_agree(db):
    reconcile(db, _events(*BATCH_A))
    reconcile(db, _events(*BATCH_B))
    db.commit()
    assert _sums(db, UsageHourlyAgg) == _sums(db, UsageDailyAgg)

    per_day = defaultdict(lambda: dict.fromkeys(COUNTER_FIELDS, 0))
    for (bucket_start, route, model), counters in _rows(db, UsageHourlyAgg).items():
        acc = per_day[(day_bucket(bucket_start).replace(tzinfo=None), route, model)]
        for name in COUNTER_FIELDS:
            acc[name] += counters[name]
    daily = _rows(db, UsageDailyAgg)
    # 15:59Z and 17:00Z fall on different local days
    assert len(daily) == 3
    assert dict(per_day) == daily


def test_reconcile_without_events_touches_nothing(db):
    outcome = reconcile(db, [])
    assert (outcome.hourly_buckets, outcome.daily_buckets) == (0, 0)
    assert db.execute(select(func.count()).select_from(UsageHourlyAgg)).scalar() == 0


def _store(db, *entries):
    batch = parse_usage_payload(snapshot(*entries), synced_at=utc(2026, 3, 2))
    insert_batch(db, batch.events, batch.synced_at)
    db.commit()


def test_rebuild_recreates_rollups_from_raw(db):
    _store(db, *BATCH_A, *BATCH_B)
    result = rebuild_rollups(db, date(2026, 3, 1), date(2026, 3, 2))
    db.commit()
    assert isinstance(result, RebuildOutcome)
    assert result.records == 5
    first = (_rows(db, UsageHourlyAgg), _rows(db, UsageDailyAgg))

    # running it again replaces instead of doubling
    rebuild_rollups(db, date(2026, 3, 1), date(2026, 3, 2))
    db.commit()
    assert (_rows(db, UsageHourlyAgg), _rows(db, UsageDailyAgg)) == first
    assert _sums(db, UsageHourlyAgg) == _sums(db, UsageDailyAgg)


def test_rebuild_dry_run_writes_nothing(db):
    _store(db, *BATCH_A)
    preview = rebuild_rollups(db, date(2026, 3, 1), date(2026, 3, 2), granularity="daily", dry_run=True)
    assert isinstance(preview, RebuildPreview)
    assert preview.records == 3
    assert preview.buckets == 2
    assert sum(s["records"] for s in preview.samples) == 3
    assert db.execute(select(func.count()).select_from(UsageDailyAgg)).scalar() == 0


def test_rebuild_defaults_to_recorded_range(db):
    _store(db, *BATCH_A)
    preview = rebuild_rollups(db, dry_run=True)
    assert preview.start_date == date(2026, 3, 1)
