"""Normalize upstream usage reports into canonical usage events.

The proxy's management `/usage` endpoint returns a statistics snapshot:

    {"usage": {"apis": {<route>: {"models": {<model>: {"details": [
        {"timestamp": "...", "tokens": {"input_tokens": 1, ...}, "failed": false}
    ]}}}}}}

Each detail becomes one event. A flat list of records (or `{"records": [...]}`)
is accepted as well so older exports and hand-made fixtures can be replayed.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser

from app.core.errors import PayloadFormatError
from app.core.models import COUNTER_FIELDS
from app.core.timebuckets import as_utc

TOKEN_FIELDS = ("input_tokens", "output_tokens", "reasoning_tokens", "cached_tokens", "total_tokens")

# Two unrelated fill-ins for the free-form parser; a string that resolves to
# different instants under each is missing a date part.
_FILL_INS = (datetime(2000, 1, 1), datetime(2001, 2, 2))

_FALSE_STRINGS = {"false", "0", "no", "n", "f", ""}


@dataclass
class UsageEvent:
    occurred_at: datetime
    route: str
    model: str
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cached_tokens: int = 0
    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    is_error: bool = False
    raw: str = "{}"
    synced_at: Optional[datetime] = None

    @property
    def key(self) -> tuple:
        return (self.occurred_at, self.route, self.model)

    def counters(self) -> Dict[str, int]:
        return {name: int(getattr(self, name)) for name in COUNTER_FIELDS}

    def to_row(self) -> Dict[str, Any]:
        row = {
            "occurred_at": self.occurred_at,
            "synced_at": self.synced_at,
            "route": self.route,
            "model": self.model,
            "is_error": self.is_error,
            "raw": self.raw,
        }
        row.update(self.counters())
        return row


@dataclass
class ParsedUsageBatch:
    synced_at: datetime
    events: List[UsageEvent] = field(default_factory=list)
    rejected: int = 0
    duplicates: int = 0


def _count(value: Any) -> int:
    """Non-negative int, 0 for missing or garbage values."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return number if number > 0 else 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e12 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return as_utc(date_parser.isoparse(value.strip()))
    except (ValueError, OverflowError):
        pass
    try:
        first, second = (date_parser.parse(value, default=d) for d in _FILL_INS)
    except (TypeError, ValueError, OverflowError):
        return None
    if first != second:
        return None
    return as_utc(first)


def parse_flag(value: Any) -> bool:
    """Coerce a JSON failure flag; unrecognized strings count as failures."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def _raw_json(obj: Any) -> str:
    try:
        return json.dumps(obj, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return json.dumps(str(obj))


def _event_from_detail(route: str, model: str, detail: Dict[str, Any]) -> Optional[UsageEvent]:
    occurred_at = parse_timestamp(detail.get("timestamp"))
    if occurred_at is None:
        return None
    tokens = detail.get("tokens") if isinstance(detail.get("tokens"), dict) else {}
    failed = parse_flag(detail.get("failed", False))
    return UsageEvent(
        occurred_at=occurred_at,
        route=route,
        model=model,
        total_requests=1,
        success_count=0 if failed else 1,
        failure_count=1 if failed else 0,
        is_error=failed,
        raw=_raw_json(detail),
        **{name: _count(tokens.get(name)) for name in TOKEN_FIELDS},
    )


def _event_from_record(record: Dict[str, Any]) -> Optional[UsageEvent]:
    occurred_at = parse_timestamp(record.get("occurred_at", record.get("timestamp")))
    if occurred_at is None:
        return None
    tokens = record.get("tokens") if isinstance(record.get("tokens"), dict) else record
    failed = parse_flag(record.get("failed", record.get("is_error", False)))
    if "total_requests" in record:
        requests = _count(record.get("total_requests"))
        success = _count(record.get("success_count"))
        failure = _count(record.get("failure_count"))
    else:
        requests, success, failure = 1, (0 if failed else 1), (1 if failed else 0)
    return UsageEvent(
        occurred_at=occurred_at,
        route=str(record.get("route") or record.get("api") or "unknown"),
        model=str(record.get("model") or "unknown"),
        total_requests=requests,
        success_count=success,
        failure_count=failure,
        is_error=failed or failure > 0,
        raw=_raw_json(record),
        **{name: _count(tokens.get(name)) for name in TOKEN_FIELDS},
    )


def _iter_snapshot(snapshot: Dict[str, Any]) -> Iterable[Optional[UsageEvent]]:
    apis = snapshot.get("apis")
    if apis is None:
        apis = {}
    if not isinstance(apis, dict):
        raise PayloadFormatError("'apis' must be an object")
    for route, api in apis.items():
        models = api.get("models") if isinstance(api, dict) else None
        if not isinstance(models, dict):
            continue
        for model, model_stats in models.items():
            details = model_stats.get("details") if isinstance(model_stats, dict) else None
            if not isinstance(details, list):
                continue
            for detail in details:
                if not isinstance(detail, dict):
                    yield None
                    continue
                yield _event_from_detail(str(route), str(model), detail)


def _iter_records(records: List[Any]) -> Iterable[Optional[UsageEvent]]:
    for record in records:
        yield _event_from_record(record) if isinstance(record, dict) else None


def parse_usage_payload(payload: Any, synced_at: Optional[datetime] = None) -> ParsedUsageBatch:
    """Turn an upstream payload into a batch of events sharing one `synced_at` stamp.

    Records without a usable timestamp are dropped and counted in `rejected`.
    Repeated (occurred_at, route, model) keys keep their first occurrence.

    Raises:
        PayloadFormatError: if the top-level shape is not recognized.
    """
    stamp = as_utc(synced_at) if synced_at else datetime.now(timezone.utc)

    if isinstance(payload, list):
        candidates = _iter_records(payload)
    elif isinstance(payload, dict):
        body = payload.get("usage", payload)
        if isinstance(body, dict) and "apis" in body:
            candidates = _iter_snapshot(body)
        elif isinstance(payload.get("records"), list):
            candidates = _iter_records(payload["records"])
        elif isinstance(body, dict) and not body.get("apis") and any(
            k in body for k in ("total_requests", "success_count", "failure_count")
        ):
            # snapshot with no traffic yet
            candidates = iter(())
        else:
            raise PayloadFormatError("Unrecognized usage payload: expected 'usage.apis' or 'records'")
    else:
        raise PayloadFormatError(f"Unrecognized usage payload type: {type(payload).__name__}")

    batch = ParsedUsageBatch(synced_at=stamp)
    seen: set[tuple] = set()
    for event in candidates:
        if event is None:
            batch.rejected += 1
            continue
        if event.key in seen:
            batch.duplicates += 1
            continue
        seen.add(event.key)
        event.synced_at = stamp
        batch.events.append(event)
    return batch
