import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.services.rollups import delete_all_rollups
from app.services.usage_store import delete_all_records

log = logging.getLogger(__name__)

router = APIRouter(prefix="/reset", tags=["reset"])

CONFIRM_VALUE = "yes-delete-all-data"


@router.post("")
def reset_usage(
    request: Request,
    x_confirm_reset: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """Delete all usage records and rollups. Development only."""
    if settings.is_production:
        raise HTTPException(status_code=403, detail="Reset is disabled in production")
    if x_confirm_reset != CONFIRM_VALUE:
        raise HTTPException(status_code=400, detail=f"Missing confirmation header: x-confirm-reset: {CONFIRM_VALUE}")
    try:
        records = delete_all_records(db)
        buckets = delete_all_rollups(db)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("[reset] failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to clear usage tables")
    request.app.state.overview_cache.clear()
    log.warning("[reset] deleted %d usage records and %d rollup buckets", records, buckets)
    return {"success": True, "deleted_records": records, "deleted_buckets": buckets}
