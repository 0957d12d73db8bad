from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.schemas import VitalsBatchIn, VitalsIngestOut, VitalsSummaryOut, VitalsTimeseriesOut
from app.services import vitals

router = APIRouter(prefix="/vitals", tags=["vitals"])


@router.post("", response_model=VitalsIngestOut)
def ingest(
    payload: VitalsBatchIn,
    user_agent: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    accepted, sampled_out = vitals.ingest_vitals(db, payload.metrics, user_agent)
    return VitalsIngestOut(accepted=accepted, sampled_out=sampled_out)


@router.get("/summary", response_model=VitalsSummaryOut)
def summary(
    hours: int = Query(default=24, ge=1, le=24 * 90),
    group_by: Literal["global", "page"] = Query(default="global", alias="groupBy"),
    pathname: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    return vitals.vitals_summary(db, hours=hours, group_by=group_by, pathname=pathname)


@router.get("/timeseries", response_model=VitalsTimeseriesOut)
def timeseries(
    hours: int = Query(default=24, ge=1, le=24 * 90),
    interval: Literal["hour", "day"] = Query(default="hour"),
    metrics: Optional[str] = Query(default=None, description="Comma-separated metric names"),
    pathname: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    names: List[str] = [m.strip().upper() for m in (metrics or "LCP,CLS,INP").split(",") if m.strip()]
    return vitals.vitals_timeseries(db, hours=hours, interval=interval, metrics=names, pathname=pathname)
