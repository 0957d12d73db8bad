import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.core.errors import PayloadFormatError, TransactionFailure, UpstreamFetchError
from app.core.schemas import SyncResultOut
from app.core.security import require_dashboard_auth
from app.services.sync import sync_usage, upstream_configured

log = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(require_dashboard_auth)])


def _perform_sync(db: Session):
    if not upstream_configured(settings):
        raise HTTPException(status_code=501, detail="CLIPROXY_BASE_URL or CLIPROXY_API_KEY is missing")
    try:
        outcome = sync_usage(db, settings)
    except UpstreamFetchError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"error": "Failed to fetch usage", "status_text": e.status_text},
        )
    except PayloadFormatError as e:
        log.error("[sync] parse upstream usage failed: %s", e)
        raise HTTPException(status_code=502, detail="Bad Gateway")
    except TransactionFailure as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Database transaction failed", "details": str(e)},
        )

    if outcome.attempted == 0:
        return SyncResultOut(rejected=outcome.rejected, message="No usage data")
    return SyncResultOut(
        inserted=outcome.inserted,
        attempted=outcome.attempted,
        skipped=outcome.skipped,
        rejected=outcome.rejected,
    )


@router.post("", response_model=SyncResultOut)
def sync_post(db: Session = Depends(get_db)):
    """Pull the proxy's usage snapshot and store anything new."""
    return _perform_sync(db)


@router.get("", response_model=SyncResultOut)
def sync_get(db: Session = Depends(get_db)):
    """Same as POST; lets cron services that only issue GETs trigger a sync."""
    return _perform_sync(db)
