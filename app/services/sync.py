"""Pull usage from the proxy and persist it.

`sync_usage()` is the whole pipeline behind `/sync`:

    fetch (requests) -> parse -> insert raw rows -> reconcile rollups -> commit

The raw insert and the rollup update commit together or not at all.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, settings
from app.core.errors import TransactionFailure, UpstreamFetchError
from app.services.rollups import reconcile
from app.services.usage_payload import ParsedUsageBatch, parse_usage_payload
from app.services.usage_store import insert_batch

log = logging.getLogger(__name__)

USER_AGENT = "usageWatch/0.1"


@dataclass
class SyncOutcome:
    attempted: int = 0
    inserted: int = 0
    skipped: int = 0
    rejected: int = 0
    hourly_buckets: int = 0
    daily_buckets: int = 0


def upstream_configured(cfg: Settings = settings) -> bool:
    return bool(cfg.cliproxy_base_url and cfg.cliproxy_api_key)


def usage_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/usage"):
        return base
    return f"{base}/usage"


def fetch_upstream_usage(cfg: Settings = settings, session: Optional[requests.Session] = None) -> Any:
    """GET `{CLIPROXY_BASE_URL}/usage` and return the decoded JSON body.

    Raises:
        UpstreamFetchError: non-2xx status, network failure, or a non-JSON body.
    """
    http = session or requests
    url = usage_url(cfg.cliproxy_base_url or "")
    headers = {
        "Authorization": f"Bearer {cfg.cliproxy_api_key}",
        "Accept": "application/json",
        "User-Agent": USER_AGENT,
    }
    try:
        resp = http.get(url, headers=headers, timeout=cfg.upstream_timeout_seconds)
    except requests.RequestException as e:
        log.warning("[sync] upstream request failed: %s", e)
        raise UpstreamFetchError(502, str(e)) from e
    if not resp.ok:
        log.warning("[sync] upstream returned %s %s", resp.status_code, resp.reason)
        raise UpstreamFetchError(resp.status_code, resp.reason or "")
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamFetchError(502, "upstream returned invalid JSON") from e


def ingest_batch(
    db: Session,
    batch: ParsedUsageBatch,
    reconcile_rollups: bool | None = None,
) -> SyncOutcome:
    """Insert a parsed batch and fold the new rows into the rollups, in one transaction.

    Raises:
        TransactionFailure: the database rejected the write; nothing was committed.
    """
    if reconcile_rollups is None:
        reconcile_rollups = settings.enable_preagg
    outcome = SyncOutcome(attempted=len(batch.events), rejected=batch.rejected)
    try:
        inserted = insert_batch(db, batch.events, batch.synced_at)
        outcome.inserted = inserted.inserted_count
        outcome.skipped = inserted.skipped
        if reconcile_rollups and inserted.inserted:
            done = reconcile(db, inserted.inserted)
            outcome.hourly_buckets = done.hourly_buckets
            outcome.daily_buckets = done.daily_buckets
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("[sync] transaction rolled back: %s", e)
        raise TransactionFailure(str(e)) from e

    log.info(
        "[sync] attempted=%d inserted=%d skipped=%d rejected=%d",
        outcome.attempted, outcome.inserted, outcome.skipped, outcome.rejected,
    )
    return outcome


def sync_usage_payload(db: Session, payload: Any, synced_at: datetime | None = None) -> SyncOutcome:
    """Parse and ingest an already-fetched payload. Raises PayloadFormatError on bad shape."""
    batch = parse_usage_payload(payload, synced_at or datetime.now(timezone.utc))
    if batch.rejected:
        log.warning("[sync] rejected %d records without a usable timestamp", batch.rejected)
    return ingest_batch(db, batch)


def sync_usage(db: Session, cfg: Settings = settings) -> SyncOutcome:
    payload = fetch_upstream_usage(cfg)
    return sync_usage_payload(db, payload)
