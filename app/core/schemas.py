"""Pydantic request/response schemas for the usageWatch API.

These map ORM rows and service results to API-friendly shapes.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------- Sync ----------
class SyncResultOut(BaseModel):
    status: str = "ok"
    inserted: int = 0
    attempted: int = 0
    skipped: int = 0
    rejected: int = 0
    message: Optional[str] = None


# ---------- Prices ----------
class ModelPriceIn(BaseModel):
    model: str = Field(min_length=1, max_length=200)
    input_price_per_1m: float = Field(ge=0)
    cached_input_price_per_1m: float = Field(default=0.0, ge=0)
    output_price_per_1m: float = Field(ge=0)

    @field_validator("model")
    @classmethod
    def _strip_model(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("model must not be blank")
        return value

    @field_validator("input_price_per_1m", "cached_input_price_per_1m", "output_price_per_1m")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("price must be a finite number")
        return value


class ModelPriceDelete(BaseModel):
    model: str = Field(min_length=1, max_length=200)


class ModelPriceOut(BaseModel):
    id: int
    model: str
    input_price_per_1m: float
    cached_input_price_per_1m: float
    output_price_per_1m: float
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ---------- Overview ----------
class ModelUsageOut(BaseModel):
    model: str
    requests: int = 0
    tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    cost: float = 0.0
    priced: bool = False


class DayUsageOut(BaseModel):
    label: str
    requests: int = 0
    tokens: int = 0
    cost: float = 0.0


class HourUsageOut(BaseModel):
    label: str
    timestamp: str
    requests: int = 0
    tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cached_tokens: int = 0


class OverviewOut(BaseModel):
    total_requests: int = 0
    total_tokens: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_reasoning_tokens: int = 0
    total_cached_tokens: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 1.0
    total_cost: float = 0.0
    unpriced_models: List[str] = Field(default_factory=list)
    models: List[ModelUsageOut] = Field(default_factory=list)
    by_day: List[DayUsageOut] = Field(default_factory=list)
    by_hour: List[HourUsageOut] = Field(default_factory=list)


class OverviewMetaOut(BaseModel):
    page: int
    page_size: int
    total_models: int
    total_pages: int
    source: Literal["raw", "rollup"]
    strategy: Optional[str] = None


class OverviewFiltersOut(BaseModel):
    models: List[str] = Field(default_factory=list)
    routes: List[str] = Field(default_factory=list)


class OverviewResponse(BaseModel):
    overview: OverviewOut
    empty: bool
    days: int
    meta: OverviewMetaOut
    filters: OverviewFiltersOut


# ---------- Analytics ----------
class CostTrendPoint(BaseModel):
    bucket: str
    model: str
    cost: float = 0.0
    tokens: int = 0
    requests: int = 0
    priced: bool = False


class ErrorTimeseriesPoint(BaseModel):
    bucket: str
    success: int = 0
    failure: int = 0
    total: int = 0
    success_rate: float = 0.0
    error_rate: float = 0.0


class TopFailureItem(BaseModel):
    key: str
    failures: int = 0
    total: int = 0
    error_rate: float = 0.0


class TokenBreakdownPoint(BaseModel):
    bucket: str
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cached_tokens: int = 0
    total_tokens: int = 0


# ---------- Web vitals ----------
VitalName = Literal["CLS", "FCP", "FID", "INP", "LCP", "TTFB"]
VitalRating = Literal["good", "needs-improvement", "poor"]


class VitalMetricIn(BaseModel):
    name: VitalName
    id: str = Field(min_length=1, max_length=128)
    value: float
    delta: float
    rating: Optional[VitalRating] = None
    navigationType: Optional[str] = Field(default=None, max_length=32)
    url: Optional[str] = Field(default=None, max_length=2048)
    pathname: Optional[str] = Field(default=None, max_length=512)
    ts: Optional[int] = Field(default=None, gt=0)
    appVersion: Optional[str] = Field(default=None, max_length=32)

    @field_validator("value", "delta")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value


class VitalsBatchIn(BaseModel):
    metrics: List[VitalMetricIn] = Field(min_length=1, max_length=50)


class VitalsIngestOut(BaseModel):
    ok: bool = True
    accepted: int = 0
    sampled_out: int = 0


class VitalSummaryItem(BaseModel):
    name: str
    pathname: Optional[str] = None
    p75: float
    count: int
    rating: VitalRating


class VitalTimeseriesPoint(BaseModel):
    bucket: str
    name: str
    p75: float
    count: int


class VitalsSummaryOut(BaseModel):
    hours: int
    group_by: Literal["global", "page"]
    items: List[VitalSummaryItem] = Field(default_factory=list)


class VitalsTimeseriesOut(BaseModel):
    hours: int
    interval: Literal["hour", "day"]
    series: Dict[str, List[VitalTimeseriesPoint]] = Field(default_factory=dict)
