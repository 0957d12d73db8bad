"""Dashboard authorization.

A caller is authorized with either
- `Authorization: Bearer <PASSWORD>` or `Bearer <CRON_SECRET>` (cron jobs, API use), or
- the `dashboard_auth` cookie holding sha256(PASSWORD) as hex (browser sessions).

The check runs as a FastAPI dependency, before any route touches the database.
"""
from __future__ import annotations

import hashlib
import hmac

from fastapi import Cookie, Header, HTTPException

from app.core.config import Settings, settings
from app.core.errors import Unauthorized

COOKIE_NAME = "dashboard_auth"


def hash_password(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _secrets(cfg: Settings) -> list[str]:
    return [s for s in (cfg.password, cfg.cron_secret) if s]


def _same(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def check_authorization(
    authorization: str | None,
    auth_cookie: str | None,
    cfg: Settings = settings,
) -> None:
    """Raise `Unauthorized` unless the bearer token or session cookie matches."""
    if authorization:
        for secret in _secrets(cfg):
            if _same(authorization, f"Bearer {secret}"):
                return
    if cfg.password and auth_cookie:
        if _same(auth_cookie, hash_password(cfg.password)):
            return
    raise Unauthorized("Unauthorized")


def require_dashboard_auth(
    authorization: str | None = Header(default=None),
    dashboard_auth: str | None = Cookie(default=None),
) -> None:
    if not _secrets(settings):
        raise HTTPException(status_code=501, detail="PASSWORD is missing")
    try:
        check_authorization(authorization, dashboard_auth, settings)
    except Unauthorized:
        raise HTTPException(status_code=401, detail="Unauthorized")
