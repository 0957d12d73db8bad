from dataclasses import replace
from datetime import date

import pytest

from app.core.errors import RollupQueryFailure, ValidationError
from app.core.models import UsageRecord
from app.services import overview as overview_service
from app.services.filters import FilterSet
from app.services.overview import Strategy, build_overview, choose_strategy, parse_params, resolve_window
from app.services.pricing import upsert_price
from app.services.sync import sync_usage_payload
from tests.helpers import detail, snapshot, utc

NOW = utc(2026, 3, 3, 12)


def _seed(db):
    entries = [
        ("openai", "gpt-4o", detail("2026-03-01T01:10:00Z", input_tokens=1_000_000, output_tokens=100_000)),
        ("openai", "gpt-4o", detail("2026-03-01T01:40:00Z", input_tokens=1_000_000, output_tokens=900_000)),
        ("openai", "gpt-4o", detail("2026-03-02T03:00:00Z", input_tokens=10, failed=True)),
        ("claude", "sonnet", detail("2026-03-01T17:30:00Z", output_tokens=20, reasoning_tokens=5)),
        ("gemini", "gemini-2.5-pro", detail("2026-03-02T04:00:00Z", input_tokens=30, cached_tokens=3)),
    ]
    sync_usage_payload(db, snapshot(*entries), synced_at=utc(2026, 3, 3))
    upsert_price(db, "gpt-4o", input_price_per_1m=2.5, output_price_per_1m=10)
    upsert_price(db, "gemini-2*", input_price_per_1m=1.0, output_price_per_1m=1.0)


def _seed_models(db, count):
    entries = [
        ("r", f"model-{i:02d}", detail(f"2026-03-02T0{i % 10}:00:00Z", input_tokens=i + 1))
        for i in range(count)
    ]
    sync_usage_payload(db, snapshot(*entries), synced_at=utc(2026, 3, 3))


def test_parse_params_defaults_and_clamps():
    params = parse_params()
    assert (params.days, params.page, params.page_size, params.source) == (14, 1, 10, "auto")

    params = parse_params(days="500", page="0", page_size="1")
    assert (params.days, params.page, params.page_size) == (90, 1, 5)
    assert parse_params(page_size="9999").page_size == 500
    assert parse_params(days="-3").days == 1


def test_parse_params_custom_range_counts_days_inclusively():
    params = parse_params(start="2026-03-01", end="2026-03-03")
    assert params.is_custom_range
    assert params.days == 3
    assert choose_strategy(params) is Strategy.DAILY_PLUS_HOURLY

    reversed_range = parse_params(start="2026-03-03", end="2026-03-01", days="7")
    assert not reversed_range.is_custom_range
    assert reversed_range.days == 7
    assert choose_strategy(reversed_range) is Strategy.HOURLY_ONLY


@pytest.mark.parametrize("field,kwargs", [
    ("start", {"start": "yesterday-ish"}),
    ("end", {"end": "2026-13-45"}),
    ("days", {"days": "a week"}),
    ("page", {"page": "two"}),
    ("page_size", {"page_size": "lots"}),
])
def test_parse_params_rejects_garbage_with_field_name(field, kwargs):
    with pytest.raises(ValidationError) as exc:
        parse_params(**kwargs)
    assert exc.value.field == field


def test_overview_totals_and_cost(db):
    _seed(db)
    result = build_overview(db, parse_params(days="7"), now=NOW)
    ov = result.overview

    assert ov.total_requests == 5
    assert ov.success_count == 4
    assert ov.failure_count == 1
    assert ov.success_rate == pytest.approx(0.8)
    assert ov.total_reasoning_tokens == 5
    # gpt-4o: 2M in * 2.5 + 1M out * 10 (+ 10 tokens) ; gemini: 30 in + 0 out at 1.0
    assert ov.total_cost == round(5.0 + 10.0 + 10 * 2.5 / 1e6 + 30 / 1e6, 4)
    assert ov.unpriced_models == ["sonnet"]

    by_model = {m.model: m for m in ov.models}
    assert by_model["gpt-4o"].priced is True
    assert by_model["sonnet"].priced is False
    assert by_model["sonnet"].cost == 0.0
    assert result.empty is False
    assert result.meta.source == "rollup"
    assert result.meta.strategy == Strategy.HOURLY_ONLY.value
    assert result.filters.routes == ["claude", "gemini", "openai"]


def test_daily_and_hourly_series_use_local_labels(db):
    _seed(db)
    ov = build_overview(db, parse_params(start="2026-03-01", end="2026-03-02"), now=NOW).overview

    assert [d.label for d in ov.by_day] == ["2026-03-01", "2026-03-02"]
    assert ov.by_day[0].requests == 2
    assert ov.by_day[0].cost == 15.0
    assert ov.by_day[1].requests == 3
    assert ov.by_hour[0].label == "03-01 09"
    assert ov.by_hour[0].requests == 2
    assert ov.by_hour[0].timestamp == utc(2026, 3, 1, 1).isoformat()


def test_rollup_and_raw_paths_agree(db):
    _seed(db)
    for params in (parse_params(days="7"), parse_params(start="2026-03-01", end="2026-03-02")):
        rollup = build_overview(db, replace(params, source="rollup"), now=NOW)
        raw = build_overview(db, replace(params, source="raw"), now=NOW)
        assert rollup.overview == raw.overview
        assert rollup.filters == raw.filters
        assert raw.meta.source == "raw"


def test_totals_do_not_depend_on_pagination(db):
    _seed_models(db, 7)
    small = build_overview(db, parse_params(days="7", page_size="5"), now=NOW)
    large = build_overview(db, parse_params(days="7", page_size="500"), now=NOW)

    assert len(small.overview.models) == 5
    assert len(large.overview.models) == 7
    assert small.overview.total_tokens == large.overview.total_tokens
    assert small.overview.total_cost == large.overview.total_cost
    assert small.meta.total_models == 7
    assert small.meta.total_pages == 2

    page_two = build_overview(db, parse_params(days="7", page="2", page_size="5"), now=NOW)
    assert [m.model for m in page_two.overview.models] == ["model-05", "model-06"]


def test_empty_window(db):
    result = build_overview(db, parse_params(days="1"), now=NOW)
    assert result.empty is True
    assert result.overview.total_requests == 0
    assert result.overview.success_rate == 1
    assert result.meta.total_pages == 1


def test_model_and_route_filters(db):
    _seed(db)
    ov = build_overview(db, parse_params(days="7", route="openai"), now=NOW)
    assert [m.model for m in ov.overview.models] == ["gpt-4o"]
    # the filter lists only narrow by time
    assert ov.filters.models == ["gemini-2.5-pro", "gpt-4o", "sonnet"]

    ov = build_overview(db, parse_params(days="7", model="sonnet"), now=NOW)
    assert ov.overview.total_requests == 1


def test_rollup_failure_falls_back_to_raw(db, monkeypatch):
    _seed(db)
    expected = build_overview(db, parse_params(days="7", source="raw"), now=NOW)

    def broken(*args, **kwargs):
        raise RollupQueryFailure("relation usage_hourly_agg does not exist")

    monkeypatch.setattr(overview_service, "_rollup_overview", broken)
    result = build_overview(db, parse_params(days="7"), now=NOW)
    assert result == expected

    with pytest.raises(RollupQueryFailure):
        build_overview(db, parse_params(days="7", source="rollup"), now=NOW)


def test_preagg_read_disabled_uses_raw(db, monkeypatch):
    from app.core.config import settings

    _seed(db)
    monkeypatch.setattr(settings, "enable_preagg_read", False)
    assert build_overview(db, parse_params(days="7"), now=NOW).meta.source == "raw"


def test_window_edges(db):
    _seed(db)
    ov = build_overview(db, parse_params(start=date(2026, 3, 2), end=date(2026, 3, 2)), now=NOW).overview
    # local March 2nd: 2026-03-01T16:00Z .. 2026-03-02T16:00Z
    assert ov.total_requests == 3


def test_raw_path_groups_in_the_database(db):
    entries = [
        ("openai", "gpt-4o", detail(f"2026-03-01T01:{minute:02d}:00Z", input_tokens=1))
        for minute in range(50)
    ]
    sync_usage_payload(db, snapshot(*entries), synced_at=utc(2026, 3, 3))
    params = parse_params(start="2026-03-01", end="2026-03-01", source="raw")
    filters = FilterSet.build(resolve_window(params, NOW))

    rows = overview_service._grouped_rows(db, UsageRecord, filters)
    # 01:00-01:49 spans four quarter-hour slices
    assert len(rows) == 4
    assert sum(r.total_requests for r in rows) == 50

    raw = build_overview(db, params, now=NOW)
    assert raw.overview.total_requests == 50
    assert [(h.label, h.requests) for h in raw.overview.by_hour] == [("03-01 09", 50)]
