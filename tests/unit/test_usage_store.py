from app.services.usage_payload import parse_usage_payload
from app.services.usage_store import count_records, delete_all_records, insert_batch
from tests.helpers import detail, snapshot, utc


def _batch(*timestamps, synced_at=None):
    payload = snapshot(*[("openai", "gpt-4o", detail(ts, input_tokens=10)) for ts in timestamps])
    return parse_usage_payload(payload, synced_at=synced_at or utc(2026, 3, 1, 12))


def test_insert_returns_only_new_rows(db):
    first = _batch("2026-03-01T01:00:00Z", "2026-03-01T02:00:00Z")
    outcome = insert_batch(db, first.events, first.synced_at)
    db.commit()
    assert outcome.attempted == 2
    assert outcome.inserted_count == 2
    assert outcome.skipped == 0

    second = _batch("2026-03-01T02:00:00Z", "2026-03-01T03:00:00Z", synced_at=utc(2026, 3, 1, 13))
    outcome = insert_batch(db, second.events, second.synced_at)
    db.commit()
    assert outcome.inserted_count == 1
    assert outcome.skipped == 1
    assert outcome.inserted[0].occurred_at == utc(2026, 3, 1, 3)
    assert count_records(db) == 3


def test_reinserting_everything_is_a_noop(db):
    batch = _batch("2026-03-01T01:00:00Z")
    insert_batch(db, batch.events, batch.synced_at)
    db.commit()

    again = _batch("2026-03-01T01:00:00Z", synced_at=utc(2026, 3, 2))
    outcome = insert_batch(db, again.events, again.synced_at)
    assert outcome.inserted == []
    assert outcome.used_fallback_count is False
    assert count_records(db) == 1


def test_empty_batch(db):
    outcome = insert_batch(db, [], utc(2026, 3, 1))
    assert outcome.attempted == 0
    assert outcome.inserted_count == 0


def test_delete_all_records(db):
    batch = _batch("2026-03-01T01:00:00Z", "2026-03-01T02:00:00Z")
    insert_batch(db, batch.events, batch.synced_at)
    db.commit()
    assert delete_all_records(db) == 2
    db.commit()
    assert count_records(db) == 0


def test_inserted_rows_are_recounted_by_synced_at_when_returning_is_empty(db, monkeypatch):
    earlier = _batch("2026-03-01T01:00:00Z")
    insert_batch(db, earlier.events, earlier.synced_at)
    db.commit()

    real_execute = db.execute

    class _NoRows:
        def all(self):
            return []

    def execute(stmt, *args, **kwargs):
        result = real_execute(stmt, *args, **kwargs)
        if getattr(stmt, "is_insert", False):
            result.all()
            return _NoRows()
        return result

    monkeypatch.setattr(db, "execute", execute)
    batch = _batch("2026-03-01T01:00:00Z", "2026-03-01T02:00:00Z", "2026-03-01T03:00:00Z", synced_at=utc(2026, 3, 1, 13))
    outcome = insert_batch(db, batch.events, batch.synced_at)

    assert outcome.used_fallback_count is True
    assert outcome.inserted_count == 2
    assert outcome.skipped == 1
    assert sorted(e.occurred_at for e in outcome.inserted) == [utc(2026, 3, 1, 2), utc(2026, 3, 1, 3)]
    assert all(e.input_tokens == 10 and e.synced_at == utc(2026, 3, 1, 13) for e in outcome.inserted)
