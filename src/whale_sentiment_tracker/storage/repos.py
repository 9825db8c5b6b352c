"""Repository pattern implementations for data access.

This module provides data access abstractions for whale events, market
snapshots, SWSI snapshots and alerts.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from whale_sentiment_tracker.detector.models import Alert
from whale_sentiment_tracker.ingestor.models import WhaleEvent
from whale_sentiment_tracker.sentiment.indicators import (
    BB_HISTORY,
    IndicatorSnapshot,
    compute_indicators,
)
from whale_sentiment_tracker.sentiment.models import MarketInputs, SWSISnapshot
from whale_sentiment_tracker.storage.models import (
    AlertModel,
    MarketSnapshotModel,
    SentimentSnapshotModel,
    WhaleEventModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _to_float(value: Decimal | float | None) -> float | None:
    return float(value) if value is not None else None


def _insert_for(session: AsyncSession, model: type) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT (PostgreSQL or SQLite)."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


@dataclass
class WhaleEventDTO:
    """Data transfer object for stored whale events."""

    id: str
    timestamp: int
    symbol: str
    blockchain: str
    amount_usd: float
    from_owner: str | None
    to_owner: str | None
    from_owner_type: str
    to_owner_type: str
    flow_type: str
    from_address: str | None = None
    to_address: str | None = None
    transaction_hash: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WhaleEventModel) -> WhaleEventDTO:
        return cls(
            id=model.id,
            timestamp=int(model.timestamp),
            symbol=model.symbol,
            blockchain=model.blockchain,
            amount_usd=float(model.amount_usd),
            from_owner=model.from_owner,
            to_owner=model.to_owner,
            from_owner_type=model.from_owner_type,
            to_owner_type=model.to_owner_type,
            flow_type=model.flow_type,
            from_address=model.from_address,
            to_address=model.to_address,
            transaction_hash=model.transaction_hash,
            created_at=_as_utc(model.created_at),
        )

    @classmethod
    def from_event(cls, event: WhaleEvent) -> WhaleEventDTO:
        return cls(
            id=event.id,
            timestamp=event.timestamp,
            symbol=event.symbol,
            blockchain=event.blockchain,
            amount_usd=event.amount_usd,
            from_owner=event.from_owner,
            to_owner=event.to_owner,
            from_owner_type=event.from_owner_type.value,
            to_owner_type=event.to_owner_type.value,
            flow_type=event.flow_type.value,
            from_address=event.from_address,
            to_address=event.to_address,
            transaction_hash=event.transaction_hash,
        )

    def to_record(self) -> dict[str, Any]:
        """Raw record form accepted by the classifier."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "symbol": self.symbol,
            "blockchain": self.blockchain,
            "amount_usd": self.amount_usd,
            "from_owner": self.from_owner,
            "to_owner": self.to_owner,
            "from_owner_type": self.from_owner_type,
            "to_owner_type": self.to_owner_type,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "transaction_hash": self.transaction_hash,
        }


class WhaleEventRepository:
    """Repository for whale transfer events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, event_id: str) -> WhaleEventDTO | None:
        result = await self.session.execute(
            select(WhaleEventModel).where(WhaleEventModel.id == event_id)
        )
        model = result.scalar_one_or_none()
        return WhaleEventDTO.from_model(model) if model else None

    async def upsert_many(self, events: Iterable[WhaleEvent]) -> int:
        """Upsert events by id (idempotent ingestion).

        Returns:
            Number of rows written.
        """
        # One row per id; a statement may not touch the same row twice.
        by_id = {
            e.id: {
                **asdict(WhaleEventDTO.from_event(e)),
                "amount_usd": Decimal(str(e.amount_usd)),
            }
            for e in events
        }
        rows = list(by_id.values())
        if not rows:
            return 0
        now = datetime.now(UTC)
        for row in rows:
            row["created_at"] = now

        stmt = _insert_for(self.session, WhaleEventModel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "timestamp": stmt.excluded.timestamp,
                "symbol": stmt.excluded.symbol,
                "blockchain": stmt.excluded.blockchain,
                "amount_usd": stmt.excluded.amount_usd,
                "from_owner": stmt.excluded.from_owner,
                "to_owner": stmt.excluded.to_owner,
                "from_owner_type": stmt.excluded.from_owner_type,
                "to_owner_type": stmt.excluded.to_owner_type,
                "flow_type": stmt.excluded.flow_type,
                "from_address": stmt.excluded.from_address,
                "to_address": stmt.excluded.to_address,
                "transaction_hash": stmt.excluded.transaction_hash,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return len(rows)

    async def list_since(
        self,
        since: int,
        *,
        min_amount_usd: float = 0.0,
        symbol: str | None = None,
    ) -> list[WhaleEventDTO]:
        """List events with timestamp >= since (Unix seconds), oldest first.

        Args:
            since: Inclusive lower bound in Unix seconds.
            min_amount_usd: Minimum transfer size.
            symbol: Restrict to one symbol; None for all.
        """
        query = select(WhaleEventModel).where(
            WhaleEventModel.timestamp >= since,
            WhaleEventModel.amount_usd >= Decimal(str(min_amount_usd)),
        )
        if symbol is not None:
            query = query.where(WhaleEventModel.symbol == symbol)
        query = query.order_by(WhaleEventModel.timestamp.asc(), WhaleEventModel.id.asc())
        result = await self.session.execute(query)
        return [WhaleEventDTO.from_model(m) for m in result.scalars().all()]

    async def prune_before(self, cutoff: int) -> int:
        """Delete events older than cutoff (Unix seconds). Returns rows deleted."""
        result = await self.session.execute(
            delete(WhaleEventModel).where(WhaleEventModel.timestamp < cutoff)
        )
        await self.session.flush()
        return int(result.rowcount or 0)


@dataclass
class MarketSnapshotDTO:
    """Market-wide changes for a timeframe, as written by the collector.

    Indicator columns are optional. A row may instead carry the close series
    the indicators are derived from.
    """

    timeframe: str
    global_change: float | None
    volume_change: float | None
    coin_changes: dict[str, float]
    as_of: datetime
    rsi_average: float | None = None
    macd_line: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    macd_cross: str | None = None
    bb_upper: float | None = None
    bb_middle: float | None = None
    bb_lower: float | None = None
    closes: list[float] | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: MarketSnapshotModel) -> MarketSnapshotDTO:
        return cls(
            timeframe=model.timeframe,
            global_change=_to_float(model.global_change),
            volume_change=_to_float(model.volume_change),
            coin_changes={k: float(v) for k, v in json.loads(model.coin_changes_json).items()},
            as_of=_as_utc(model.as_of),
            rsi_average=model.rsi_average,
            macd_line=model.macd_line,
            macd_signal=model.macd_signal,
            macd_histogram=model.macd_histogram,
            macd_cross=model.macd_cross,
            bb_upper=model.bb_upper,
            bb_middle=model.bb_middle,
            bb_lower=model.bb_lower,
            closes=[float(c) for c in json.loads(model.closes_json)] if model.closes_json else None,
            created_at=_as_utc(model.created_at),
        )

    @property
    def has_indicator_columns(self) -> bool:
        return any(
            v is not None
            for v in (self.rsi_average, self.macd_histogram, self.bb_upper, self.bb_lower)
        )

    @property
    def bb_width(self) -> float | None:
        if self.bb_upper is None or self.bb_lower is None:
            return None
        return self.bb_upper - self.bb_lower

    def indicators(self, previous: Sequence[MarketSnapshotDTO] = ()) -> IndicatorSnapshot | None:
        """Indicator readings for this row.

        Args:
            previous: Earlier rows for the same timeframe, most recent first.
                Supply the previous RSI and band widths for stored readings.
        """
        if self.has_indicator_columns:
            widths = [w for w in (p.bb_width for p in previous) if w is not None]
            return IndicatorSnapshot(
                rsi=self.rsi_average,
                previous_rsi=previous[0].rsi_average if previous else None,
                macd_line=self.macd_line,
                macd_signal=self.macd_signal,
                macd_histogram=self.macd_histogram,
                macd_cross=self.macd_cross,
                bb_upper=self.bb_upper,
                bb_middle=self.bb_middle,
                bb_lower=self.bb_lower,
                bb_width_history=tuple(widths[:BB_HISTORY]),
            )
        if self.closes:
            return compute_indicators(self.closes)
        return None

    def to_market_inputs(self, previous: Sequence[MarketSnapshotDTO] = ()) -> MarketInputs:
        return MarketInputs(
            timeframe=self.timeframe,
            global_change=self.global_change,
            coin_changes=dict(self.coin_changes),
            volume_change=self.volume_change,
            as_of=self.as_of,
            indicators=self.indicators(previous),
        )


class MarketSnapshotRepository:
    """Repository for collector-written market snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: MarketSnapshotDTO) -> MarketSnapshotDTO:
        model = MarketSnapshotModel(
            timeframe=dto.timeframe,
            global_change=Decimal(str(dto.global_change)) if dto.global_change is not None else None,
            volume_change=Decimal(str(dto.volume_change)) if dto.volume_change is not None else None,
            coin_changes_json=json.dumps(dto.coin_changes, sort_keys=True),
            rsi_average=dto.rsi_average,
            macd_line=dto.macd_line,
            macd_signal=dto.macd_signal,
            macd_histogram=dto.macd_histogram,
            macd_cross=dto.macd_cross,
            bb_upper=dto.bb_upper,
            bb_middle=dto.bb_middle,
            bb_lower=dto.bb_lower,
            closes_json=json.dumps(dto.closes) if dto.closes is not None else None,
            as_of=dto.as_of,
        )
        self.session.add(model)
        await self.session.flush()
        return dto

    async def get_latest(self, timeframe: str) -> MarketSnapshotDTO | None:
        recent = await self.list_recent(timeframe, limit=1)
        return recent[0] if recent else None

    async def list_recent(self, timeframe: str, *, limit: int = 10) -> list[MarketSnapshotDTO]:
        """Most recent rows for a timeframe, newest first."""
        result = await self.session.execute(
            select(MarketSnapshotModel)
            .where(MarketSnapshotModel.timeframe == timeframe)
            .order_by(MarketSnapshotModel.as_of.desc(), MarketSnapshotModel.id.desc())
            .limit(limit)
        )
        return [MarketSnapshotDTO.from_model(m) for m in result.scalars().all()]


def _snapshot_from_model(model: SentimentSnapshotModel) -> SWSISnapshot:
    return SWSISnapshot(
        timeframe=model.timeframe,
        global_change=float(model.global_change),
        coins_change=float(model.coins_change),
        volume_change=float(model.volume_change),
        whale_weight=float(model.whale_weight),
        swsi_score=float(model.swsi_score),
        bull_ratio=float(model.bull_ratio),
        bear_ratio=float(model.bear_ratio),
        total_volume_usd=float(model.total_volume_usd),
        buy_volume_usd=float(model.buy_volume_usd),
        sell_volume_usd=float(model.sell_volume_usd),
        whale_count=model.whale_count,
        created_at=_as_utc(model.created_at),
        market_as_of=_as_utc(model.market_as_of),
        is_stale=model.is_stale,
        stale_reason=model.stale_reason,
    )


class SentimentSnapshotRepository:
    """Repository for computed SWSI snapshots."""

    _NUMERIC_FIELDS = (
        "global_change",
        "coins_change",
        "volume_change",
        "whale_weight",
        "swsi_score",
        "bull_ratio",
        "bear_ratio",
        "total_volume_usd",
        "buy_volume_usd",
        "sell_volume_usd",
    )

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, snapshot: SWSISnapshot) -> SWSISnapshot:
        """Upsert by (timeframe, created_at) so republishing a cycle is a no-op."""
        values: dict[str, Any] = {
            name: Decimal(str(round(getattr(snapshot, name), 6))) for name in self._NUMERIC_FIELDS
        }
        values.update(
            timeframe=snapshot.timeframe,
            whale_count=snapshot.whale_count,
            is_stale=snapshot.is_stale,
            stale_reason=snapshot.stale_reason,
            market_as_of=snapshot.market_as_of,
            created_at=snapshot.created_at,
        )
        stmt = _insert_for(self.session, SentimentSnapshotModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["timeframe", "created_at"],
            set_={
                **{name: getattr(stmt.excluded, name) for name in self._NUMERIC_FIELDS},
                "whale_count": stmt.excluded.whale_count,
                "is_stale": stmt.excluded.is_stale,
                "stale_reason": stmt.excluded.stale_reason,
                "market_as_of": stmt.excluded.market_as_of,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return snapshot

    async def get_latest(self, timeframe: str) -> SWSISnapshot | None:
        result = await self.session.execute(
            select(SentimentSnapshotModel)
            .where(SentimentSnapshotModel.timeframe == timeframe)
            .order_by(SentimentSnapshotModel.created_at.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return _snapshot_from_model(model) if model else None

    async def list_recent(self, timeframe: str, *, limit: int = 100) -> list[SWSISnapshot]:
        result = await self.session.execute(
            select(SentimentSnapshotModel)
            .where(SentimentSnapshotModel.timeframe == timeframe)
            .order_by(SentimentSnapshotModel.created_at.desc())
            .limit(limit)
        )
        return [_snapshot_from_model(m) for m in result.scalars().all()]


@dataclass
class AlertDTO:
    """Data transfer object for stored alerts."""

    rule_id: str
    rule_name: str
    tier: str
    severity: str
    priority: int
    symbol: str
    timeframe: str
    message: str
    metrics: dict[str, Any]
    created_at: datetime
    id: int | None = None

    @classmethod
    def from_model(cls, model: AlertModel) -> AlertDTO:
        return cls(
            id=model.id,
            rule_id=model.rule_id,
            rule_name=model.rule_name,
            tier=model.tier,
            severity=model.severity,
            priority=model.priority,
            symbol=model.symbol,
            timeframe=model.timeframe,
            message=model.message,
            metrics=json.loads(model.metrics_json),
            created_at=_as_utc(model.created_at),
        )


class AlertRepository:
    """Append-only repository for fired alerts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, alert: Alert) -> AlertDTO:
        model = AlertModel(
            rule_id=alert.rule_id,
            rule_name=alert.rule_name,
            tier=alert.tier.value,
            severity=alert.severity,
            priority=alert.priority,
            symbol=alert.symbol,
            timeframe=alert.timeframe,
            message=alert.message,
            metrics_json=json.dumps(alert.metrics, sort_keys=True, default=str),
            created_at=alert.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        return AlertDTO.from_model(model)

    async def list_recent(self, *, limit: int = 50) -> list[AlertDTO]:
        result = await self.session.execute(
            select(AlertModel).order_by(AlertModel.created_at.desc(), AlertModel.id.desc()).limit(limit)
        )
        return [AlertDTO.from_model(m) for m in result.scalars().all()]
