"""Dashboard overview: totals, per-model page, daily and hourly series.

One planner serves both storage paths. The raw path groups `usage_records`
directly; the rollup path reads the pre-aggregated tables with one of two
strategies:

- DAILY_PLUS_HOURLY (explicit start/end dates): daily rollups for totals,
  per-model and per-day figures, hourly rollups for the hourly series.
- HOURLY_ONLY (relative "last N days" window): hourly rollups for everything,
  since the window edge rarely falls on a local midnight.

In `auto` mode a failing rollup read is retried on the raw path with the same
output shape.
"""
from __future__ import annotations

import enum
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence

from dateutil import parser as date_parser
from sqlalchemy import BigInteger, distinct, func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import epoch_seconds
from app.core.errors import RollupQueryFailure, ValidationError
from app.core.models import COUNTER_FIELDS, UsageDailyAgg, UsageHourlyAgg, UsageRecord
from app.core.schemas import (
    DayUsageOut,
    HourUsageOut,
    ModelUsageOut,
    OverviewFiltersOut,
    OverviewMetaOut,
    OverviewOut,
    OverviewResponse,
)
from app.core.timebuckets import as_utc, day_end, day_label, day_start, hour_bucket, hour_label, local_date, reference_tz
from app.services.filters import FilterSet, TimeRange, time_column
from app.services.pricing import PriceBook, estimate_cost, load_price_book

log = logging.getLogger(__name__)

Source = Literal["auto", "raw", "rollup"]

DEFAULT_DAYS = 14
MAX_DAYS = 90
DEFAULT_PAGE_SIZE = 10
MIN_PAGE_SIZE = 5
MAX_PAGE_SIZE = 500

# Raw records are grouped into UTC slices this long before leaving the
# database. Every UTC offset is a whole number of slices, so each slice lies
# inside a single local hour.
RAW_SLICE_SECONDS = 15 * 60


class Strategy(enum.Enum):
    DAILY_PLUS_HOURLY = "daily_plus_hourly"
    HOURLY_ONLY = "hourly_only"


@dataclass(frozen=True)
class OverviewParams:
    days: int = DEFAULT_DAYS
    start: Optional[date] = None
    end: Optional[date] = None
    model: Optional[str] = None
    route: Optional[str] = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    source: Source = "auto"

    @property
    def is_custom_range(self) -> bool:
        return self.start is not None and self.end is not None and self.end >= self.start

    def cache_key_params(self) -> Dict[str, Any]:
        return {
            "days": self.days,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "model": self.model,
            "route": self.route,
            "page": self.page,
            "page_size": self.page_size,
        }


def _parse_int(field: str, value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(field, f"expected an integer, got {value!r}")


def _parse_date(field: str, value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return local_date(value) if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = date_parser.isoparse(str(value).strip())
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(field, f"expected an ISO date, got {value!r}")
    return local_date(parsed) if parsed.tzinfo else parsed.date()


def parse_params(
    days: Any = None,
    start: Any = None,
    end: Any = None,
    model: Optional[str] = None,
    route: Optional[str] = None,
    page: Any = None,
    page_size: Any = None,
    source: Source = "auto",
) -> OverviewParams:
    """Normalize raw query values.

    Unparseable values raise `ValidationError(field)`; numbers outside their
    range are clamped.
    """
    if source not in ("auto", "raw", "rollup"):
        raise ValidationError("source", f"expected auto, raw or rollup, got {source!r}")
    start_date = _parse_date("start", start)
    end_date = _parse_date("end", end)
    day_count = min(max(_parse_int("days", days, DEFAULT_DAYS), 1), MAX_DAYS)
    params = OverviewParams(
        days=day_count,
        start=start_date,
        end=end_date,
        model=(model or "").strip() or None,
        route=(route or "").strip() or None,
        page=max(_parse_int("page", page, 1), 1),
        page_size=min(max(_parse_int("page_size", page_size, DEFAULT_PAGE_SIZE), MIN_PAGE_SIZE), MAX_PAGE_SIZE),
        source=source,
    )
    if params.is_custom_range:
        # inclusive day count
        return replace(params, days=(end_date - start_date).days + 1)
    return params


def resolve_window(params: OverviewParams, now: datetime) -> TimeRange:
    tz = reference_tz()
    if params.is_custom_range:
        return TimeRange(since=day_start(params.start, tz), until=day_end(params.end, tz))
    return TimeRange(since=as_utc(now) - timedelta(days=params.days))


def choose_source(requested: Source) -> Literal["raw", "rollup"]:
    if requested in ("raw", "rollup"):
        return requested
    return "rollup" if settings.enable_preagg_read else "raw"


def choose_strategy(params: OverviewParams) -> Strategy:
    return Strategy.DAILY_PLUS_HOURLY if params.is_custom_range else Strategy.HOURLY_ONLY


# ---------- Queries ----------

def _slice_expr(db: Session, model):
    if model is UsageRecord:
        width = literal_column(str(RAW_SLICE_SECONDS), BigInteger)
        return (epoch_seconds(db, model.occurred_at) // width) * width
    return time_column(model)


def _slice_start(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _grouped_rows(db: Session, model, filters: FilterSet) -> Sequence:
    """Counter sums grouped by (time slice, model name).

    Rollups group on their bucket column; raw records on RAW_SLICE_SECONDS
    slices, so either way the row count is bounded by buckets, not events.
    """
    ts = _slice_expr(db, model)
    stmt = select(
        ts.label("ts"),
        model.model.label("model"),
        *[func.coalesce(func.sum(getattr(model, name)), 0).label(name) for name in COUNTER_FIELDS],
    )
    stmt = filters.apply(stmt, model)
    return db.execute(stmt.group_by(ts, model.model).order_by(ts.asc())).all()


def _available(db: Session, model, filters: FilterSet) -> OverviewFiltersOut:
    models = db.execute(
        filters.apply(select(distinct(model.model)), model, time_only=True).order_by(model.model.asc())
    ).scalars().all()
    routes = db.execute(
        filters.apply(select(distinct(model.route)), model, time_only=True).order_by(model.route.asc())
    ).scalars().all()
    return OverviewFiltersOut(models=list(models), routes=list(routes))


# ---------- Assembly ----------

def _zero() -> Dict[str, int]:
    return dict.fromkeys(COUNTER_FIELDS, 0)


def _add(acc: Dict[str, int], row) -> None:
    mapping = row._mapping
    for name in COUNTER_FIELDS:
        acc[name] += int(mapping[name] or 0)


def _assemble(
    totals_rows: Sequence,
    hourly_rows: Sequence,
    prices: PriceBook,
    params: OverviewParams,
) -> tuple[OverviewOut, int]:
    tz = reference_tz()
    per_model: Dict[str, Dict[str, int]] = defaultdict(_zero)
    per_day_model: Dict[tuple, Dict[str, int]] = defaultdict(_zero)
    for row in totals_rows:
        _add(per_model[row.model], row)
        _add(per_day_model[(day_label(_slice_start(row.ts), tz), row.model)], row)

    per_hour: Dict[datetime, Dict[str, int]] = defaultdict(_zero)
    for row in hourly_rows:
        _add(per_hour[hour_bucket(_slice_start(row.ts), tz)], row)

    out = OverviewOut()
    model_rows: List[ModelUsageOut] = []
    total_cost = 0.0
    for name in sorted(per_model):
        counters = per_model[name]
        estimate = estimate_cost(counters, name, prices)
        total_cost += estimate.cost
        model_rows.append(ModelUsageOut(
            model=name,
            requests=counters["total_requests"],
            tokens=counters["total_tokens"],
            input_tokens=counters["input_tokens"],
            output_tokens=counters["output_tokens"],
            cached_tokens=counters["cached_tokens"],
            cost=round(estimate.cost, 4),
            priced=estimate.priced,
        ))
        out.total_requests += counters["total_requests"]
        out.total_tokens += counters["total_tokens"]
        out.total_input_tokens += counters["input_tokens"]
        out.total_output_tokens += counters["output_tokens"]
        out.total_reasoning_tokens += counters["reasoning_tokens"]
        out.total_cached_tokens += counters["cached_tokens"]
        out.success_count += counters["success_count"]
        out.failure_count += counters["failure_count"]

    out.success_rate = out.success_count / out.total_requests if out.total_requests else 1.0
    out.total_cost = round(total_cost, 4)
    out.unpriced_models = [m.model for m in model_rows if not m.priced]

    first = (params.page - 1) * params.page_size
    out.models = model_rows[first:first + params.page_size]

    days: Dict[str, DayUsageOut] = {}
    for (label, name), counters in per_day_model.items():
        day = days.setdefault(label, DayUsageOut(label=label))
        day.requests += counters["total_requests"]
        day.tokens += counters["total_tokens"]
        day.cost += estimate_cost(counters, name, prices).cost
    for day in days.values():
        day.cost = round(day.cost, 2)
    out.by_day = sorted(days.values(), key=lambda d: d.label)

    out.by_hour = [
        HourUsageOut(
            label=hour_label(bucket, tz),
            timestamp=as_utc(bucket).isoformat(),
            requests=counters["total_requests"],
            tokens=counters["total_tokens"],
            input_tokens=counters["input_tokens"],
            output_tokens=counters["output_tokens"],
            reasoning_tokens=counters["reasoning_tokens"],
            cached_tokens=counters["cached_tokens"],
        )
        for bucket, counters in sorted(per_hour.items(), key=lambda item: as_utc(item[0]))
    ]
    return out, len(model_rows)


def _response(
    overview: OverviewOut,
    total_models: int,
    available: OverviewFiltersOut,
    params: OverviewParams,
    source: str,
    strategy: Optional[Strategy],
) -> OverviewResponse:
    return OverviewResponse(
        overview=overview,
        empty=total_models == 0,
        days=params.days,
        meta=OverviewMetaOut(
            page=params.page,
            page_size=params.page_size,
            total_models=total_models,
            total_pages=max(1, math.ceil(total_models / params.page_size)),
            source=source,
            strategy=strategy.value if strategy else None,
        ),
        filters=available,
    )


def _raw_overview(db: Session, params: OverviewParams, filters: FilterSet, prices: PriceBook) -> OverviewResponse:
    rows = _grouped_rows(db, UsageRecord, filters)
    overview, total_models = _assemble(rows, rows, prices, params)
    return _response(overview, total_models, _available(db, UsageRecord, filters), params, "raw", None)


def _rollup_overview(db: Session, params: OverviewParams, filters: FilterSet, prices: PriceBook) -> OverviewResponse:
    strategy = choose_strategy(params)
    try:
        hourly_rows = _grouped_rows(db, UsageHourlyAgg, filters)
        if strategy is Strategy.DAILY_PLUS_HOURLY:
            totals_table = UsageDailyAgg
            totals_rows = _grouped_rows(db, UsageDailyAgg, filters)
        else:
            totals_table = UsageHourlyAgg
            totals_rows = hourly_rows
        available = _available(db, totals_table, filters)
    except SQLAlchemyError as e:
        raise RollupQueryFailure(str(e)) from e
    overview, total_models = _assemble(totals_rows, hourly_rows, prices, params)
    return _response(overview, total_models, available, params, "rollup", strategy)


def build_overview(db: Session, params: OverviewParams, now: datetime | None = None) -> OverviewResponse:
    now = now or datetime.now(timezone.utc)
    filters = FilterSet.build(resolve_window(params, now), model=params.model, route=params.route)
    prices = load_price_book(db)
    source = choose_source(params.source)

    if source == "raw":
        return _raw_overview(db, params, filters, prices)
    if params.source == "rollup":
        return _rollup_overview(db, params, filters, prices)
    try:
        return _rollup_overview(db, params, filters, prices)
    except RollupQueryFailure as e:
        log.warning("[overview] rollup read failed, falling back to raw records: %s", e)
        db.rollback()
        return _raw_overview(db, params, filters, prices)
