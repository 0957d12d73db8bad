from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db

router = APIRouter()


@router.get("")
def healthcheck(db: Session = Depends(get_db)):
    """Service + DB health status.

    Returns:
        { "ok": true, "db": true|false, "preagg": {...} }
    """
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        db_ok = False
    return {
        "ok": True,
        "db": db_ok,
        "env": settings.app_env,
        "preagg": {"write": settings.enable_preagg, "read": settings.enable_preagg_read},
    }
