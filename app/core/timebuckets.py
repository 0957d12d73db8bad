"""Hour/day bucketing in the reference timezone.

All bucket boundaries are civil-calendar boundaries in `settings.timezone`,
stored as UTC instants. SQLite hands back naive datetimes; those are UTC.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from app.core.config import settings


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def reference_tz(name: str | None = None) -> ZoneInfo:
    return _zone(name or settings.timezone or "UTC")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hour_bucket(value: datetime, tz: ZoneInfo | None = None) -> datetime:
    local = as_utc(value).astimezone(tz or reference_tz())
    return local.replace(minute=0, second=0, microsecond=0).astimezone(timezone.utc)


def day_bucket(value: datetime, tz: ZoneInfo | None = None) -> datetime:
    tz = tz or reference_tz()
    local_day = as_utc(value).astimezone(tz).date()
    return day_start(local_day, tz)


def day_start(day: date, tz: ZoneInfo | None = None) -> datetime:
    """UTC instant of local midnight starting `day`."""
    return datetime.combine(day, time.min, tzinfo=tz or reference_tz()).astimezone(timezone.utc)


def day_end(day: date, tz: ZoneInfo | None = None) -> datetime:
    """UTC instant of the last microsecond of local `day`."""
    return day_start(day + timedelta(days=1), tz) - timedelta(microseconds=1)


def local_date(value: datetime, tz: ZoneInfo | None = None) -> date:
    return as_utc(value).astimezone(tz or reference_tz()).date()


def day_label(value: datetime, tz: ZoneInfo | None = None) -> str:
    return local_date(value, tz).isoformat()


def hour_label(value: datetime, tz: ZoneInfo | None = None) -> str:
    return as_utc(value).astimezone(tz or reference_tz()).strftime("%m-%d %H")
