"""Rollup-backed analytics series: cost trend, errors, token mix.

Every query reads the hourly or daily rollup table (chosen by `interval`) over
the last `hours`. The window start is snapped down to the enclosing bucket so
the first bucket is counted whole.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Literal, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.models import UsageDailyAgg, UsageHourlyAgg
from app.core.schemas import CostTrendPoint, ErrorTimeseriesPoint, TokenBreakdownPoint, TopFailureItem
from app.core.timebuckets import as_utc, day_bucket, hour_bucket
from app.services.filters import FilterSet, TimeRange
from app.services.pricing import estimate_cost, load_price_book

Interval = Literal["hour", "day"]

DEFAULT_HOURS = 168
MAX_HOURS = 24 * 90


def clamp_hours(hours: Optional[int], default: int = DEFAULT_HOURS) -> int:
    if hours is None:
        return default
    return min(max(int(hours), 1), MAX_HOURS)


def _table(interval: Interval):
    if interval == "hour":
        return UsageHourlyAgg
    if interval == "day":
        return UsageDailyAgg
    raise ValueError(f"interval must be 'hour' or 'day' (got {interval!r})")


def _filters(hours: int, interval: Interval, now: datetime | None, **equals) -> FilterSet:
    now = as_utc(now or datetime.now(timezone.utc))
    since = now - timedelta(hours=hours)
    since = hour_bucket(since) if interval == "hour" else day_bucket(since)
    return FilterSet.build(TimeRange(since=since, until=now), **equals)


def _label(bucket: datetime) -> str:
    return as_utc(bucket).isoformat()


def cost_trend_by_model(
    db: Session,
    hours: int = DEFAULT_HOURS,
    route: Optional[str] = None,
    interval: Interval = "day",
    now: datetime | None = None,
) -> List[CostTrendPoint]:
    table = _table(interval)
    stmt = select(
        table.bucket_start,
        table.model,
        func.sum(table.input_tokens).label("input_tokens"),
        func.sum(table.output_tokens).label("output_tokens"),
        func.sum(table.cached_tokens).label("cached_tokens"),
        func.sum(table.total_tokens).label("total_tokens"),
        func.sum(table.total_requests).label("total_requests"),
    )
    stmt = _filters(hours, interval, now, route=route).apply(stmt, table)
    rows = db.execute(
        stmt.group_by(table.bucket_start, table.model).order_by(table.bucket_start.asc(), table.model.asc())
    ).all()

    prices = load_price_book(db)
    out: List[CostTrendPoint] = []
    for row in rows:
        counters = dict(row._mapping)
        estimate = estimate_cost(counters, row.model, prices)
        out.append(CostTrendPoint(
            bucket=_label(row.bucket_start),
            model=row.model,
            cost=round(estimate.cost, 6),
            tokens=int(counters["total_tokens"] or 0),
            requests=int(counters["total_requests"] or 0),
            priced=estimate.priced,
        ))
    return out


def error_timeseries(
    db: Session,
    hours: int = DEFAULT_HOURS,
    model: Optional[str] = None,
    route: Optional[str] = None,
    interval: Interval = "day",
    now: datetime | None = None,
) -> List[ErrorTimeseriesPoint]:
    table = _table(interval)
    stmt = select(
        table.bucket_start,
        func.sum(table.success_count).label("success"),
        func.sum(table.failure_count).label("failure"),
        func.sum(table.total_requests).label("total"),
    )
    stmt = _filters(hours, interval, now, model=model, route=route).apply(stmt, table)
    rows = db.execute(stmt.group_by(table.bucket_start).order_by(table.bucket_start.asc())).all()

    out: List[ErrorTimeseriesPoint] = []
    for bucket_start, success, failure, total in rows:
        success, failure, total = int(success or 0), int(failure or 0), int(total or 0)
        out.append(ErrorTimeseriesPoint(
            bucket=_label(bucket_start),
            success=success,
            failure=failure,
            total=total,
            success_rate=(success / total) if total else 0.0,
            error_rate=(failure / total) if total else 0.0,
        ))
    return out


def top_failures(
    db: Session,
    hours: int = DEFAULT_HOURS,
    group_by: Literal["model", "route"] = "model",
    limit: int = 10,
    now: datetime | None = None,
) -> List[TopFailureItem]:
    if group_by not in ("model", "route"):
        raise ValueError(f"group_by must be 'model' or 'route' (got {group_by!r})")
    table = UsageHourlyAgg
    key_col = getattr(table, group_by)
    failures = func.sum(table.failure_count)
    stmt = select(key_col.label("key"), failures.label("failures"), func.sum(table.total_requests).label("total"))
    stmt = _filters(hours, "hour", now).apply(stmt, table)
    rows = db.execute(
        stmt.group_by(key_col)
        .having(failures > 0)
        .order_by(failures.desc(), key_col.asc())
        .limit(max(1, min(int(limit), 100)))
    ).all()
    return [
        TopFailureItem(
            key=str(key),
            failures=int(fail or 0),
            total=int(total or 0),
            error_rate=(int(fail or 0) / int(total)) if total else 0.0,
        )
        for key, fail, total in rows
    ]


def token_breakdown(
    db: Session,
    hours: int = 24,
    model: Optional[str] = None,
    route: Optional[str] = None,
    interval: Interval = "hour",
    now: datetime | None = None,
) -> List[TokenBreakdownPoint]:
    table = _table(interval)
    names = ("input_tokens", "output_tokens", "reasoning_tokens", "cached_tokens", "total_tokens")
    stmt = select(table.bucket_start, *[func.sum(getattr(table, n)).label(n) for n in names])
    stmt = _filters(hours, interval, now, model=model, route=route).apply(stmt, table)
    rows = db.execute(stmt.group_by(table.bucket_start).order_by(table.bucket_start.asc())).all()

    buckets: Dict[str, Dict[str, int]] = defaultdict(lambda: dict.fromkeys(names, 0))
    for row in rows:
        acc = buckets[_label(row.bucket_start)]
        for n in names:
            acc[n] += int(row._mapping[n] or 0)
    return [TokenBreakdownPoint(bucket=bucket, **counts) for bucket, counts in buckets.items()]
