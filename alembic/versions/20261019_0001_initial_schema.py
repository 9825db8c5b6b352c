"""Initial schema for whale events, market inputs, SWSI snapshots and alerts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "whale_events",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("blockchain", sa.String(32), nullable=False),
        sa.Column("amount_usd", sa.Numeric(24, 2), nullable=False),
        sa.Column("from_owner", sa.String(128), nullable=True),
        sa.Column("to_owner", sa.String(128), nullable=True),
        sa.Column("from_owner_type", sa.String(16), nullable=False),
        sa.Column("to_owner_type", sa.String(16), nullable=False),
        sa.Column("flow_type", sa.String(16), nullable=False),
        sa.Column("from_address", sa.String(128), nullable=True),
        sa.Column("to_address", sa.String(128), nullable=True),
        sa.Column("transaction_hash", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_whale_events_timestamp", "whale_events", ["timestamp"])
    op.create_index("idx_whale_events_symbol_ts", "whale_events", ["symbol", "timestamp"])

    op.create_table(
        "market_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timeframe", sa.String(8), nullable=False),
        sa.Column("global_change", sa.Numeric(18, 6), nullable=True),
        sa.Column("volume_change", sa.Numeric(18, 6), nullable=True),
        sa.Column("coin_changes_json", sa.Text(), nullable=False),
        sa.Column("as_of", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_market_snapshots_tf_as_of", "market_snapshots", ["timeframe", "as_of"]
    )

    op.create_table(
        "sentiment_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timeframe", sa.String(8), nullable=False),
        sa.Column("global_change", sa.Numeric(18, 6), nullable=False),
        sa.Column("coins_change", sa.Numeric(18, 6), nullable=False),
        sa.Column("volume_change", sa.Numeric(18, 6), nullable=False),
        sa.Column("whale_weight", sa.Numeric(10, 6), nullable=False),
        sa.Column("swsi_score", sa.Numeric(18, 6), nullable=False),
        sa.Column("bull_ratio", sa.Numeric(10, 6), nullable=False),
        sa.Column("bear_ratio", sa.Numeric(10, 6), nullable=False),
        sa.Column("total_volume_usd", sa.Numeric(24, 2), nullable=False),
        sa.Column("buy_volume_usd", sa.Numeric(24, 2), nullable=False),
        sa.Column("sell_volume_usd", sa.Numeric(24, 2), nullable=False),
        sa.Column("whale_count", sa.Integer(), nullable=False),
        sa.Column("is_stale", sa.Boolean(), nullable=False),
        sa.Column("stale_reason", sa.Text(), nullable=True),
        sa.Column("market_as_of", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("timeframe", "created_at", name="uq_sentiment_snapshots_tf_created"),
    )
    op.create_index(
        "idx_sentiment_snapshots_created_at", "sentiment_snapshots", ["created_at"]
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("rule_id", sa.String(16), nullable=False),
        sa.Column("rule_name", sa.String(64), nullable=False),
        sa.Column("tier", sa.String(1), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("timeframe", sa.String(8), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metrics_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_alerts_created_at", "alerts", ["created_at"])
    op.create_index("idx_alerts_rule_key", "alerts", ["rule_id", "symbol", "timeframe"])


def downgrade() -> None:
    op.drop_index("idx_alerts_rule_key", table_name="alerts")
    op.drop_index("idx_alerts_created_at", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("idx_sentiment_snapshots_created_at", table_name="sentiment_snapshots")
    op.drop_table("sentiment_snapshots")
    op.drop_index("idx_market_snapshots_tf_as_of", table_name="market_snapshots")
    op.drop_table("market_snapshots")
    op.drop_index("idx_whale_events_symbol_ts", table_name="whale_events")
    op.drop_index("idx_whale_events_timestamp", table_name="whale_events")
    op.drop_table("whale_events")
