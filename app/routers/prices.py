from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.schemas import ModelPriceDelete, ModelPriceIn, ModelPriceOut
from app.core.security import require_dashboard_auth
from app.services import pricing

router = APIRouter(prefix="/prices", tags=["prices"], dependencies=[Depends(require_dashboard_auth)])


@router.get("")
def list_prices(db: Session = Depends(get_db)):
    rows = pricing.list_prices(db)
    return {"prices": [ModelPriceOut.model_validate(r) for r in rows]}


@router.post("")
def upsert_price(payload: ModelPriceIn, db: Session = Depends(get_db)):
    """Create or replace the price entry for `model` (trailing `*` allowed)."""
    row = pricing.upsert_price(
        db,
        model=payload.model,
        input_price_per_1m=payload.input_price_per_1m,
        output_price_per_1m=payload.output_price_per_1m,
        cached_input_price_per_1m=payload.cached_input_price_per_1m,
    )
    return {"ok": True, "price": ModelPriceOut.model_validate(row)}


@router.delete("")
def delete_price(payload: ModelPriceDelete, db: Session = Depends(get_db)):
    if not pricing.delete_price(db, payload.model.strip()):
        raise HTTPException(status_code=404, detail=f"No price configured for {payload.model!r}")
    return {"ok": True}
