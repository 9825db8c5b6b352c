"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from whale_sentiment_tracker.ingestor.classifier import derive_flow_type
from whale_sentiment_tracker.ingestor.models import OwnerType, WhaleEvent

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time."""
    return FIXED_NOW


@pytest.fixture
def now_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


@pytest.fixture
def make_event(now: datetime) -> Callable[..., WhaleEvent]:
    """Factory for classified whale events relative to ``now``.

    Defaults to a $20M BTC wallet -> exchange transfer (inflow) one minute ago.
    """

    def _make(
        event_id: str = "evt-1",
        *,
        seconds_ago: int = 60,
        amount_usd: float = 20_000_000.0,
        symbol: str = "BTC",
        from_type: OwnerType = OwnerType.WALLET,
        to_type: OwnerType = OwnerType.EXCHANGE,
        from_address: str | None = None,
        to_address: str | None = None,
    ) -> WhaleEvent:
        return WhaleEvent(
            id=event_id,
            timestamp=int(now.timestamp()) - seconds_ago,
            symbol=symbol,
            blockchain="bitcoin",
            amount_usd=amount_usd,
            from_owner="Binance" if from_type is OwnerType.EXCHANGE else None,
            to_owner="Binance" if to_type is OwnerType.EXCHANGE else None,
            from_owner_type=from_type,
            to_owner_type=to_type,
            flow_type=derive_flow_type(
                from_type, to_type, from_address=from_address, to_address=to_address
            ),
            from_address=from_address,
            to_address=to_address,
        )

    return _make


@pytest.fixture
def raw_transfer(now: datetime) -> dict:
    """A raw upstream transfer record (wallet -> Binance)."""
    return {
        "id": "2456789123",
        "blockchain": "Bitcoin",
        "symbol": "btc",
        "timestamp": int(now.timestamp()) - 120,
        "amount_usd": 125_000_000,
        "from": {"address": "bc1qwallet", "owner": "unknown", "owner_type": "unknown"},
        "to": {"address": "bc1qbinance", "owner": "binance", "owner_type": "exchange"},
        "transaction_hash": "abc123",
    }
