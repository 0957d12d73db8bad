"""create usage, rollup, price and web vitals tables

Revision ID: 20260301_create_usage_tables
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260301_create_usage_tables"
down_revision = None
branch_labels = None
depends_on = None

COUNTERS = (
    "total_tokens",
    "input_tokens",
    "output_tokens",
    "reasoning_tokens",
    "cached_tokens",
    "total_requests",
    "success_count",
    "failure_count",
)


def _rollup_table(name: str):
    op.create_table(
        name,
        sa.Column("bucket_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("route", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=False),
        *[sa.Column(c, sa.BigInteger(), nullable=False, server_default="0") for c in COUNTERS],
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("bucket_start", "route", "model"),
    )


def upgrade():
    op.create_table(
        "usage_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("route", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=False),
        *[sa.Column(c, sa.Integer(), nullable=False, server_default="0") for c in COUNTERS],
        sa.Column("is_error", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("raw", sa.Text(), nullable=False),
        sa.UniqueConstraint("occurred_at", "route", "model", name="usage_records_occurred_route_model_idx"),
    )
    op.create_index("idx_usage_records_synced_at", "usage_records", ["synced_at"])
    op.create_index("idx_usage_records_model_occurred", "usage_records", ["model", "occurred_at"])
    op.create_index("idx_usage_records_route_occurred", "usage_records", ["route", "occurred_at"])

    _rollup_table("usage_hourly_agg")
    op.create_index("idx_hourly_model_time", "usage_hourly_agg", ["model", "bucket_start"])
    _rollup_table("usage_daily_agg")
    op.create_index("idx_daily_route_time", "usage_daily_agg", ["route", "bucket_start"])

    op.create_table(
        "model_prices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("model", sa.Text(), nullable=False, unique=True),
        sa.Column("input_price_per_1m", sa.Numeric(10, 4), nullable=False),
        sa.Column("cached_input_price_per_1m", sa.Numeric(10, 4), nullable=False, server_default="0"),
        sa.Column("output_price_per_1m", sa.Numeric(10, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "web_vitals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(8), nullable=False),
        sa.Column("metric_id", sa.String(128), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("delta", sa.Float(), nullable=False),
        sa.Column("rating", sa.String(32)),
        sa.Column("navigation_type", sa.String(32)),
        sa.Column("url", sa.String(1024)),
        sa.Column("pathname", sa.String(256)),
        sa.Column("user_agent", sa.String(512)),
        sa.Column("client_ts", sa.BigInteger()),
        sa.Column("app_version", sa.String(32)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_vitals_perf", "web_vitals", ["pathname", "name", "created_at"])


def downgrade():
    op.drop_index("idx_vitals_perf", table_name="web_vitals")
    op.drop_table("web_vitals")
    op.drop_table("model_prices")
    op.drop_index("idx_daily_route_time", table_name="usage_daily_agg")
    op.drop_table("usage_daily_agg")
    op.drop_index("idx_hourly_model_time", table_name="usage_hourly_agg")
    op.drop_table("usage_hourly_agg")
    op.drop_index("idx_usage_records_route_occurred", table_name="usage_records")
    op.drop_index("idx_usage_records_model_occurred", table_name="usage_records")
    op.drop_index("idx_usage_records_synced_at", table_name="usage_records")
    op.drop_table("usage_records")
