"""Core Web Vitals beacons: sampled ingestion and p75 reporting.

Sampling is deterministic per metric id, so every beacon for one page view is
either kept or dropped as a whole no matter how often the client retries.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.models import WebVital
from app.core.schemas import (
    VitalMetricIn,
    VitalsSummaryOut,
    VitalsTimeseriesOut,
    VitalSummaryItem,
    VitalTimeseriesPoint,
)

log = logging.getLogger(__name__)

SAMPLE_RATES: Dict[str, float] = {
    "LCP": 1.0,
    "CLS": 1.0,
    "INP": 1.0,
    "FCP": 0.2,
    "FID": 0.2,
    "TTFB": 0.2,
}

# (good upper bound, needs-improvement upper bound)
THRESHOLDS: Dict[str, Tuple[float, float]] = {
    "LCP": (2500, 4000),
    "CLS": (0.1, 0.25),
    "INP": (200, 500),
    "FCP": (1800, 3000),
    "TTFB": (800, 1800),
}

MAX_URL = 1024
MAX_PATHNAME = 256
MAX_USER_AGENT = 512
MAX_APP_VERSION = 32


def hash32(value: str) -> int:
    """31-multiplier string hash wrapped to a signed 32-bit int."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h >= 0x80000000 else h


def sample_rate(name: str) -> float:
    return SAMPLE_RATES.get(name, settings.vitals_sample_rate)


def should_sample(metric_id: str, rate: float) -> bool:
    if rate >= 1:
        return True
    if rate <= 0:
        return False
    return abs(hash32(metric_id)) % 100 < rate * 100


def rate_value(name: str, value: float) -> str:
    bounds = THRESHOLDS.get(name)
    if bounds is None:
        return "good"
    good, poor = bounds
    if value <= good:
        return "good"
    if value <= poor:
        return "needs-improvement"
    return "poor"


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


def ingest_vitals(
    db: Session,
    metrics: Sequence[VitalMetricIn],
    user_agent: Optional[str] = None,
    now: datetime | None = None,
) -> Tuple[int, int]:
    """Store the sampled subset of `metrics`; returns (accepted, sampled_out)."""
    created_at = now or datetime.now(timezone.utc)
    rows: List[WebVital] = []
    for metric in metrics:
        if not should_sample(metric.id, sample_rate(metric.name)):
            continue
        rows.append(WebVital(
            name=metric.name,
            metric_id=metric.id,
            value=float(metric.value),
            delta=float(metric.delta),
            rating=metric.rating,
            navigation_type=_clip(metric.navigationType, 32),
            url=_clip(metric.url, MAX_URL),
            pathname=_clip(metric.pathname, MAX_PATHNAME),
            user_agent=_clip(user_agent, MAX_USER_AGENT),
            client_ts=metric.ts,
            app_version=_clip(metric.appVersion, MAX_APP_VERSION),
            created_at=created_at,
        ))
    if rows:
        db.add_all(rows)
        db.commit()
    sampled_out = len(metrics) - len(rows)
    log.debug("[vitals] accepted=%d sampled_out=%d", len(rows), sampled_out)
    return len(rows), sampled_out


def _frame(
    db: Session,
    hours: int,
    names: Optional[Iterable[str]] = None,
    pathname: Optional[str] = None,
    now: datetime | None = None,
) -> pd.DataFrame:
    since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
    stmt = select(WebVital.name, WebVital.value, WebVital.pathname, WebVital.created_at).where(
        WebVital.created_at >= since
    )
    if names:
        stmt = stmt.where(WebVital.name.in_(list(names)))
    if pathname:
        stmt = stmt.where(WebVital.pathname == pathname)
    rows = db.execute(stmt).all()
    df = pd.DataFrame([tuple(r) for r in rows], columns=["name", "value", "pathname", "created_at"])
    if not df.empty:
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
    return df


def _p75(values: pd.Series) -> float:
    # linear interpolation between closest ranks
    return float(values.quantile(0.75, interpolation="linear"))


def vitals_summary(
    db: Session,
    hours: int = 24,
    group_by: str = "global",
    pathname: Optional[str] = None,
    now: datetime | None = None,
) -> VitalsSummaryOut:
    df = _frame(db, hours, pathname=pathname, now=now)
    out = VitalsSummaryOut(hours=hours, group_by=group_by)
    if df.empty:
        return out
    keys = ["name", "pathname"] if group_by == "page" else ["name"]
    if group_by == "page":
        df["pathname"] = df["pathname"].fillna("")
    for key, group in df.groupby(keys, sort=True):
        key = key if isinstance(key, tuple) else (key,)
        name = key[0]
        p75 = _p75(group["value"])
        out.items.append(VitalSummaryItem(
            name=name,
            pathname=(key[1] or None) if group_by == "page" else None,
            p75=p75,
            count=int(len(group)),
            rating=rate_value(name, p75),
        ))
    return out


def vitals_timeseries(
    db: Session,
    hours: int = 24,
    interval: str = "hour",
    metrics: Sequence[str] = ("LCP", "CLS", "INP"),
    pathname: Optional[str] = None,
    now: datetime | None = None,
) -> VitalsTimeseriesOut:
    out = VitalsTimeseriesOut(hours=hours, interval=interval)
    df = _frame(db, hours, names=metrics, pathname=pathname, now=now)
    if df.empty:
        return out
    df["bucket"] = df["created_at"].dt.floor("h" if interval == "hour" else "D")
    for (name, bucket), group in df.groupby(["name", "bucket"], sort=True):
        out.series.setdefault(name, []).append(VitalTimeseriesPoint(
            bucket=bucket.isoformat(),
            name=name,
            p75=_p75(group["value"]),
            count=int(len(group)),
        ))
    return out
