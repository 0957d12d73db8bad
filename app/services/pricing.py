from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.models import ModelPrice

# (input, cached_input, output) in USD per 1M tokens
Rates = Tuple[float, float, float]


@dataclass(frozen=True)
class CostEstimate:
    cost: float
    priced: bool


def _get_attr(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def compute_usage_cost(
    input_tokens: int,
    output_tokens: int,
    cached_input_tokens: int,
    input_per_million: float,
    output_per_million: float,
    cached_per_million: float,
) -> float:
    return (
        (float(input_tokens) / 1_000_000.0) * float(input_per_million)
        + (float(cached_input_tokens) / 1_000_000.0) * float(cached_per_million)
        + (float(output_tokens) / 1_000_000.0) * float(output_per_million)
    )


class PriceBook:
    """Price table with exact and trailing-wildcard model matching.

    `gpt-4o` matches only `gpt-4o`; `gemini-2*` matches every model starting
    with `gemini-2`. An exact entry always wins; among wildcard entries the
    longest literal prefix wins.
    """

    def __init__(self, prices: Mapping[str, Rates] | None = None):
        self._exact: Dict[str, Rates] = {}
        self._patterns: List[Tuple[str, Rates]] = []
        for model, rates in (prices or {}).items():
            self.add(model, rates)

    def add(self, model: str, rates: Rates) -> None:
        if model.endswith("*"):
            self._patterns.append((model[:-1], rates))
            self._patterns.sort(key=lambda item: len(item[0]), reverse=True)
        else:
            self._exact[model] = rates

    def __len__(self) -> int:
        return len(self._exact) + len(self._patterns)

    def resolve(self, model: str) -> Optional[Rates]:
        rates = self._exact.get(model)
        if rates is not None:
            return rates
        for prefix, pattern_rates in self._patterns:
            if model.startswith(prefix):
                return pattern_rates
        return None

    def estimate(self, model: str, tokens: Any) -> CostEstimate:
        return estimate_cost(tokens, model, self)


def estimate_cost(tokens: Any, model: str, prices: PriceBook) -> CostEstimate:
    """Cost of `tokens` (mapping or object with input/cached/output counts) for `model`.

    Unknown models cost 0.0 and come back with `priced=False`.
    """
    rates = prices.resolve(model)
    if rates is None:
        return CostEstimate(cost=0.0, priced=False)
    in_rate, cached_rate, out_rate = rates
    cost = compute_usage_cost(
        input_tokens=int(_get_attr(tokens, "input_tokens", 0) or 0),
        output_tokens=int(_get_attr(tokens, "output_tokens", 0) or 0),
        cached_input_tokens=int(_get_attr(tokens, "cached_tokens", 0) or 0),
        input_per_million=in_rate,
        output_per_million=out_rate,
        cached_per_million=cached_rate,
    )
    return CostEstimate(cost=cost, priced=True)


def _rates(row: ModelPrice) -> Rates:
    return (
        float(row.input_price_per_1m or 0),
        float(row.cached_input_price_per_1m or 0),
        float(row.output_price_per_1m or 0),
    )


def load_price_book(db: Session) -> PriceBook:
    rows = db.execute(select(ModelPrice)).scalars().all()
    return PriceBook({row.model: _rates(row) for row in rows})


def list_prices(db: Session) -> List[ModelPrice]:
    return list(db.execute(select(ModelPrice).order_by(ModelPrice.model.asc())).scalars().all())


def upsert_price(
    db: Session,
    model: str,
    input_price_per_1m: float,
    output_price_per_1m: float,
    cached_input_price_per_1m: float = 0.0,
) -> ModelPrice:
    row = db.execute(select(ModelPrice).where(ModelPrice.model == model)).scalar_one_or_none()
    if row is None:
        row = ModelPrice(model=model)
        db.add(row)
    row.input_price_per_1m = Decimal(str(input_price_per_1m))
    row.cached_input_price_per_1m = Decimal(str(cached_input_price_per_1m))
    row.output_price_per_1m = Decimal(str(output_price_per_1m))
    db.commit()
    db.refresh(row)
    return row


def delete_price(db: Session, model: str) -> bool:
    result = db.execute(delete(ModelPrice).where(ModelPrice.model == model))
    db.commit()
    return bool(result.rowcount)


def unpriced(models: Iterable[str], prices: PriceBook) -> List[str]:
    return sorted({m for m in models if prices.resolve(m) is None})
