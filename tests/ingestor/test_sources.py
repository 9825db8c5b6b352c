"""Tests for database-backed event and market sources."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from whale_sentiment_tracker.errors import TransientFetchError
from whale_sentiment_tracker.ingestor.classifier import classify_batch
from whale_sentiment_tracker.ingestor.models import FlowType
from whale_sentiment_tracker.ingestor.sources import DatabaseEventSource, DatabaseMarketDataSource
from whale_sentiment_tracker.storage.database import DatabaseManager
from whale_sentiment_tracker.storage.repos import (
    MarketSnapshotDTO,
    MarketSnapshotRepository,
    WhaleEventRepository,
)


@pytest.fixture
async def db(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'sources.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def unreachable_db() -> MagicMock:
    db = MagicMock(spec=DatabaseManager)
    db.get_async_session.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
    return db


@pytest.mark.asyncio
async def test_database_ping(db) -> None:
    await db.ping()


class TestDatabaseEventSource:
    @pytest.mark.asyncio
    async def test_fetch_by_symbol(self, db, make_event, now: datetime) -> None:
        async with db.get_async_session() as session:
            await WhaleEventRepository(session).upsert_many(
                [make_event("btc"), make_event("eth", symbol="ETH")]
            )

        source = DatabaseEventSource(db)
        since = int(now.timestamp()) - 3600
        all_records = await source.fetch_events("all", 10_000_000, since)
        btc_records = await source.fetch_events("BTC", 10_000_000, since)

        assert {r["id"] for r in all_records} == {"btc", "eth"}
        assert [r["id"] for r in btc_records] == ["btc"]
        batch = classify_batch(all_records)
        assert batch.dropped == 0
        assert {e.flow_type for e in batch.events} == {FlowType.INFLOW}

    @pytest.mark.asyncio
    async def test_unreachable_store_is_transient(self, unreachable_db: MagicMock) -> None:
        source = DatabaseEventSource(unreachable_db)

        with pytest.raises(TransientFetchError) as exc_info:
            await source.fetch_events("ALL", 0, 0)

        assert exc_info.value.source == "whale_events"


class TestDatabaseMarketDataSource:
    @pytest.mark.asyncio
    async def test_latest_inputs(self, db, now: datetime) -> None:
        async with db.get_async_session() as session:
            await MarketSnapshotRepository(session).insert(
                MarketSnapshotDTO(
                    timeframe="1h",
                    global_change=1.5,
                    volume_change=-10.0,
                    coin_changes={"BTC": 2.0},
                    as_of=now - timedelta(minutes=2),
                )
            )

        source = DatabaseMarketDataSource(db)
        inputs = await source.fetch_market_snapshot("1h")

        assert inputs is not None
        assert inputs.global_change == 1.5
        assert inputs.coin_changes == {"BTC": 2.0}
        assert await source.fetch_market_snapshot("4h") is None

    @pytest.mark.asyncio
    async def test_indicators_use_earlier_rows(self, db, now: datetime) -> None:
        async with db.get_async_session() as session:
            repo = MarketSnapshotRepository(session)
            for hours_ago, rsi in ((1, 44.0), (0, 71.0)):
                await repo.insert(
                    MarketSnapshotDTO(
                        timeframe="1h",
                        global_change=0.0,
                        volume_change=0.0,
                        coin_changes={},
                        as_of=now - timedelta(hours=hours_ago),
                        rsi_average=rsi,
                        bb_upper=102.0,
                        bb_middle=100.0,
                        bb_lower=98.0,
                    )
                )

        inputs = await DatabaseMarketDataSource(db).fetch_market_snapshot("1h")

        assert inputs is not None
        assert inputs.indicators is not None
        assert inputs.indicators.rsi == 71.0
        assert inputs.indicators.previous_rsi == 44.0
        assert inputs.indicators.bb_width_history == (4.0,)
        assert inputs.indicators.metric("rsi_level_change") == 3.0

    @pytest.mark.asyncio
    async def test_unreachable_store_is_transient(self, unreachable_db: MagicMock) -> None:
        with pytest.raises(TransientFetchError):
            await DatabaseMarketDataSource(unreachable_db).fetch_market_snapshot("1h")
