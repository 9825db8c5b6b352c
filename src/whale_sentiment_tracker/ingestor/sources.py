"""Event and market data sources.

Sources return raw records; classification happens downstream so that
stored flow labels are always re-derived. Connectivity failures surface as
TransientFetchError and are never retried within a cycle.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from whale_sentiment_tracker.errors import TransientFetchError
from whale_sentiment_tracker.ingestor.window import ALL_SYMBOLS
from whale_sentiment_tracker.sentiment.indicators import BB_HISTORY
from whale_sentiment_tracker.sentiment.models import MarketInputs
from whale_sentiment_tracker.storage.database import DatabaseManager
from whale_sentiment_tracker.storage.repos import MarketSnapshotRepository, WhaleEventRepository

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (SQLAlchemyError, OSError, TimeoutError)


class EventSource(Protocol):
    async def fetch_events(
        self, symbol: str, min_amount_usd: float, since: int
    ) -> list[dict[str, Any]]:
        """Return raw transfer records with timestamp >= since (Unix seconds).

        Args:
            symbol: Asset code, or ALL for every symbol.
            min_amount_usd: Minimum transfer size.
            since: Inclusive lower bound in Unix seconds.

        Raises:
            TransientFetchError: If the source is unreachable.
        """
        ...


class MarketDataSource(Protocol):
    async def fetch_market_snapshot(self, timeframe: str) -> MarketInputs | None:
        """Return the latest market inputs for a timeframe, or None if none exist.

        Raises:
            TransientFetchError: If the source is unreachable.
        """
        ...


class DatabaseEventSource:
    """EventSource backed by the whale_events table."""

    name = "whale_events"

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def fetch_events(
        self, symbol: str, min_amount_usd: float, since: int
    ) -> list[dict[str, Any]]:
        symbol = symbol.strip().upper()
        try:
            async with self._db.get_async_session() as session:
                rows = await WhaleEventRepository(session).list_since(
                    since,
                    min_amount_usd=min_amount_usd,
                    symbol=None if symbol == ALL_SYMBOLS else symbol,
                )
        except _TRANSIENT_ERRORS as e:
            raise TransientFetchError(self.name, str(e)) from e
        logger.debug("Fetched %d events for %s since %d", len(rows), symbol, since)
        return [row.to_record() for row in rows]


class DatabaseMarketDataSource:
    """MarketDataSource backed by collector-written market_snapshots rows."""

    name = "market_snapshots"

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def fetch_market_snapshot(self, timeframe: str) -> MarketInputs | None:
        try:
            async with self._db.get_async_session() as session:
                # Earlier rows supply the previous RSI and band widths.
                rows = await MarketSnapshotRepository(session).list_recent(
                    timeframe, limit=BB_HISTORY + 1
                )
        except _TRANSIENT_ERRORS as e:
            raise TransientFetchError(self.name, str(e)) from e
        if not rows:
            logger.debug("No market snapshot stored for %s", timeframe)
            return None
        return rows[0].to_market_inputs(rows[1:])
