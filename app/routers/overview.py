from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.errors import ValidationError
from app.core.schemas import OverviewResponse
from app.services.cache import ResultCache
from app.services.overview import build_overview, choose_source, parse_params

router = APIRouter(prefix="/overview", tags=["overview"])

CACHE_CONTROL = "private, max-age=30, stale-while-revalidate=60"


def get_overview_cache(request: Request) -> ResultCache:
    return request.app.state.overview_cache


@router.get("", response_model=OverviewResponse)
def overview(
    response: Response,
    days: Optional[str] = Query(default=None),
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
    model: Optional[str] = Query(default=None),
    route: Optional[str] = Query(default=None),
    page: Optional[str] = Query(default=None),
    page_size: Optional[str] = Query(default=None, alias="pageSize"),
    preagg: Optional[Literal["0", "1"]] = Query(default=None),
    db: Session = Depends(get_db),
    cache: ResultCache = Depends(get_overview_cache),
):
    """Totals, per-model page and daily/hourly series for a time window.

    `preagg=1` forces the rollup tables, `preagg=0` forces raw records; without
    it the configured default applies.
    """
    source = {"1": "rollup", "0": "raw"}.get(preagg or "", "auto")
    try:
        params = parse_params(
            days=days, start=start, end=end, model=model, route=route,
            page=page, page_size=page_size, source=source,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.detail())

    key = cache.make_key(**params.cache_key_params(), source=choose_source(params.source))
    result = cache.get(key)
    if result is None:
        result = build_overview(db, params)
        cache.set(key, result)

    response.headers["Cache-Control"] = CACHE_CONTROL
    return result
