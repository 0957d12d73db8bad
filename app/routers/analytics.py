from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.schemas import CostTrendPoint, ErrorTimeseriesPoint, TokenBreakdownPoint, TopFailureItem
from app.services import analytics

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/cost/trend-by-model", response_model=List[CostTrendPoint])
def cost_trend_by_model(
    hours: int = Query(default=analytics.DEFAULT_HOURS, ge=1, le=analytics.MAX_HOURS),
    route: Optional[str] = Query(default=None),
    interval: Literal["hour", "day"] = Query(default="day"),
    db: Session = Depends(get_db),
):
    return analytics.cost_trend_by_model(db, hours=hours, route=route, interval=interval)


@router.get("/errors/timeseries", response_model=List[ErrorTimeseriesPoint])
def error_timeseries(
    hours: int = Query(default=analytics.DEFAULT_HOURS, ge=1, le=analytics.MAX_HOURS),
    model: Optional[str] = Query(default=None),
    route: Optional[str] = Query(default=None),
    interval: Literal["hour", "day"] = Query(default="day"),
    db: Session = Depends(get_db),
):
    return analytics.error_timeseries(db, hours=hours, model=model, route=route, interval=interval)


@router.get("/errors/top", response_model=List[TopFailureItem])
def top_failures(
    hours: int = Query(default=analytics.DEFAULT_HOURS, ge=1, le=analytics.MAX_HOURS),
    group_by: Literal["model", "route"] = Query(default="model", alias="groupBy"),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return analytics.top_failures(db, hours=hours, group_by=group_by, limit=limit)


@router.get("/tokens/breakdown", response_model=List[TokenBreakdownPoint])
def token_breakdown(
    hours: int = Query(default=24, ge=1, le=analytics.MAX_HOURS),
    model: Optional[str] = Query(default=None),
    route: Optional[str] = Query(default=None),
    interval: Literal["hour", "day"] = Query(default="hour"),
    db: Session = Depends(get_db),
):
    return analytics.token_breakdown(db, hours=hours, model=model, route=route, interval=interval)
