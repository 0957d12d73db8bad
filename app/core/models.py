"""SQLAlchemy ORM models for usageWatch.

Tables:
- usage_records     (raw usage events pulled from the proxy)
- usage_hourly_agg  (hourly rollup)
- usage_daily_agg   (daily rollup)
- model_prices
- web_vitals
"""
from __future__ import annotations
from sqlalchemy.sql import func

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from app.core.db import Base


COUNTER_FIELDS = (
    "total_tokens",
    "input_tokens",
    "output_tokens",
    "reasoning_tokens",
    "cached_tokens",
    "total_requests",
    "success_count",
    "failure_count",
)


class UsageRecord(Base):
    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    route = Column(Text, nullable=False)
    model = Column(Text, nullable=False)

    total_tokens = Column(Integer, nullable=False, default=0)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    reasoning_tokens = Column(Integer, nullable=False, default=0, server_default="0")
    cached_tokens = Column(Integer, nullable=False, default=0, server_default="0")
    total_requests = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    is_error = Column(Boolean, nullable=False, default=False)
    raw = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("occurred_at", "route", "model", name="usage_records_occurred_route_model_idx"),
        Index("idx_usage_records_synced_at", "synced_at"),
        Index("idx_usage_records_model_occurred", "model", "occurred_at"),
        Index("idx_usage_records_route_occurred", "route", "occurred_at"),
    )


class _RollupColumns:
    # bucket_start is the UTC instant of the local hour/day start (settings.timezone)
    bucket_start = Column(DateTime(timezone=True), primary_key=True)
    route = Column(Text, primary_key=True)
    model = Column(Text, primary_key=True)

    total_tokens = Column(BigInteger, nullable=False, default=0, server_default="0")
    input_tokens = Column(BigInteger, nullable=False, default=0, server_default="0")
    output_tokens = Column(BigInteger, nullable=False, default=0, server_default="0")
    reasoning_tokens = Column(BigInteger, nullable=False, default=0, server_default="0")
    cached_tokens = Column(BigInteger, nullable=False, default=0, server_default="0")
    total_requests = Column(BigInteger, nullable=False, default=0, server_default="0")
    success_count = Column(BigInteger, nullable=False, default=0, server_default="0")
    failure_count = Column(BigInteger, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UsageHourlyAgg(_RollupColumns, Base):
    __tablename__ = "usage_hourly_agg"

    __table_args__ = (
        Index("idx_hourly_model_time", "model", "bucket_start"),
    )


class UsageDailyAgg(_RollupColumns, Base):
    __tablename__ = "usage_daily_agg"

    __table_args__ = (
        Index("idx_daily_route_time", "route", "bucket_start"),
    )


class ModelPrice(Base):
    __tablename__ = "model_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    model = Column(Text, nullable=False, unique=True)  # may end with '*' (prefix pattern)
    input_price_per_1m = Column(Numeric(10, 4), nullable=False)
    cached_input_price_per_1m = Column(Numeric(10, 4), nullable=False, default=0, server_default="0")
    output_price_per_1m = Column(Numeric(10, 4), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebVital(Base):
    __tablename__ = "web_vitals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(8), nullable=False)
    metric_id = Column(String(128), nullable=False)
    value = Column(Float, nullable=False)
    delta = Column(Float, nullable=False)
    rating = Column(String(32))
    navigation_type = Column(String(32))
    url = Column(String(1024))
    pathname = Column(String(256))
    user_agent = Column(String(512))
    client_ts = Column(BigInteger)
    app_version = Column(String(32))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_vitals_perf", "pathname", "name", "created_at"),
    )
