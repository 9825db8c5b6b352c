"""SQLAlchemy models for persistent storage.

This module defines the database schema for whale transfer events, market
snapshots written by the external collector, computed SWSI snapshots and
fired alerts.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WhaleEventModel(Base):
    """Large on-chain transfer, keyed by the upstream event id.

    flow_type is stored for convenience only; readers re-derive it from the
    owner types.
    """

    __tablename__ = "whale_events"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)  # unix seconds
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    blockchain: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)

    from_owner: Mapped[str | None] = mapped_column(String(128), nullable=True)
    to_owner: Mapped[str | None] = mapped_column(String(128), nullable=True)
    from_owner_type: Mapped[str] = mapped_column(String(16), nullable=False)
    to_owner_type: Mapped[str] = mapped_column(String(16), nullable=False)
    flow_type: Mapped[str] = mapped_column(String(16), nullable=False)

    from_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    to_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_whale_events_timestamp", "timestamp"),
        Index("idx_whale_events_symbol_ts", "symbol", "timestamp"),
    )


class MarketSnapshotModel(Base):
    """Market-wide changes for one timeframe, written by the market collector."""

    __tablename__ = "market_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timeframe: Mapped[str] = mapped_column(String(8), nullable=False)

    global_change: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    volume_change: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    # {"BTC": 1.2, "ETH": -0.4, ...} percentage changes
    coin_changes_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # Indicator readings, when the collector computes them itself
    rsi_average: Mapped[float | None] = mapped_column(Float, nullable=True)
    macd_line: Mapped[float | None] = mapped_column(Float, nullable=True)
    macd_signal: Mapped[float | None] = mapped_column(Float, nullable=True)
    macd_histogram: Mapped[float | None] = mapped_column(Float, nullable=True)
    macd_cross: Mapped[str | None] = mapped_column(String(8), nullable=True)
    bb_upper: Mapped[float | None] = mapped_column(Float, nullable=True)
    bb_middle: Mapped[float | None] = mapped_column(Float, nullable=True)
    bb_lower: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Close series (oldest first) to derive indicators from otherwise
    closes_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_market_snapshots_tf_as_of", "timeframe", "as_of"),)


class SentimentSnapshotModel(Base):
    """Computed SWSI snapshot. Append-only history."""

    __tablename__ = "sentiment_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timeframe: Mapped[str] = mapped_column(String(8), nullable=False)

    global_change: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    coins_change: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    volume_change: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    whale_weight: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)
    swsi_score: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    bull_ratio: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)
    bear_ratio: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)

    total_volume_usd: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)
    buy_volume_usd: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)
    sell_volume_usd: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)
    whale_count: Mapped[int] = mapped_column(Integer, nullable=False)

    is_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stale_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    market_as_of: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("timeframe", "created_at", name="uq_sentiment_snapshots_tf_created"),
        Index("idx_sentiment_snapshots_created_at", "created_at"),
    )


class AlertModel(Base):
    """Fired alert. Append-only."""

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_id: Mapped[str] = mapped_column(String(16), nullable=False)
    rule_name: Mapped[str] = mapped_column(String(64), nullable=False)
    tier: Mapped[str] = mapped_column(String(1), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    timeframe: Mapped[str] = mapped_column(String(8), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    metrics_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_alerts_created_at", "created_at"),
        Index("idx_alerts_rule_key", "rule_id", "symbol", "timeframe"),
    )
