"""Data models for the sentiment module."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from whale_sentiment_tracker.errors import ConfigurationError
from whale_sentiment_tracker.sentiment.indicators import IndicatorSnapshot

# Fixed large-cap basket used for coins_change. Static approximate
# market-cap weights; coins missing from an input are renormalized away.
DEFAULT_COIN_BASKET: dict[str, float] = {
    "BTC": 0.50,
    "ETH": 0.25,
    "XRP": 0.10,
    "SOL": 0.10,
    "BNB": 0.05,
}


@dataclass(frozen=True)
class SentimentWeights:
    """Weights of the four SWSI components. Must sum to 1."""

    global_change: float = 0.25
    coins_change: float = 0.25
    volume_change: float = 0.20
    whale_weight: float = 0.30

    def __post_init__(self) -> None:
        values = (self.global_change, self.coins_change, self.volume_change, self.whale_weight)
        if any(v < 0 for v in values):
            raise ConfigurationError("SWSI weights must be non-negative")
        if not math.isclose(sum(values), 1.0, abs_tol=1e-9):
            raise ConfigurationError(f"SWSI weights must sum to 1, got {sum(values):.6f}")


@dataclass(frozen=True)
class ComponentScales:
    """Percentage change that maps to a normalized component value of 1.0."""

    global_change_pct: float = 5.0
    coins_change_pct: float = 5.0
    volume_change_pct: float = 50.0

    def __post_init__(self) -> None:
        if min(self.global_change_pct, self.coins_change_pct, self.volume_change_pct) <= 0:
            raise ConfigurationError("SWSI component scales must be positive")


@dataclass(frozen=True)
class MarketInputs:
    """Market-wide percentage changes over one timeframe.

    Attributes:
        timeframe: Timeframe the changes refer to.
        global_change: Total market capitalization change (%).
        coin_changes: Per-coin price change (%) keyed by symbol.
        volume_change: Aggregate traded volume change vs. the trailing
            window of equal duration (%).
        as_of: When the upstream collector computed these values.
        indicators: RSI/MACD/Bollinger readings for the timeframe, if the
            collector provided them or a close series to derive them from.
    """

    timeframe: str
    global_change: float | None
    coin_changes: Mapping[str, float] = field(default_factory=dict)
    volume_change: float | None = None
    as_of: datetime = field(default_factory=lambda: datetime.now(UTC))
    indicators: IndicatorSnapshot | None = None


def basket_change(coin_changes: Mapping[str, float], basket: Mapping[str, float]) -> float | None:
    """Weighted mean change over the basket coins present in coin_changes.

    Returns None when no basket coin is available.
    """
    total_weight = 0.0
    weighted = 0.0
    for symbol, weight in basket.items():
        change = coin_changes.get(symbol)
        if change is None or not math.isfinite(change):
            continue
        weighted += change * weight
        total_weight += weight
    if total_weight <= 0:
        return None
    return weighted / total_weight


@dataclass(frozen=True)
class SWSISnapshot:
    """Smart Whale Sentiment Index for one timeframe at one cycle.

    Snapshots are immutable and superseded, never updated: the history is an
    append-only sequence.
    """

    timeframe: str
    global_change: float
    coins_change: float
    volume_change: float
    whale_weight: float
    swsi_score: float
    bull_ratio: float
    bear_ratio: float
    total_volume_usd: float
    buy_volume_usd: float
    sell_volume_usd: float
    whale_count: int
    created_at: datetime
    market_as_of: datetime | None = None
    is_stale: bool = False
    stale_reason: str | None = None

    def metric(self, name: str) -> float:
        """Look up a numeric field by name."""
        value = getattr(self, name, None)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"Unknown sentiment metric {name!r}")
        return float(value)

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for persistence."""
        return {
            "timeframe": self.timeframe,
            "global_change": self.global_change,
            "coins_change": self.coins_change,
            "volume_change": self.volume_change,
            "whale_weight": self.whale_weight,
            "swsi_score": self.swsi_score,
            "bull_ratio": self.bull_ratio,
            "bear_ratio": self.bear_ratio,
            "total_volume_usd": self.total_volume_usd,
            "buy_volume_usd": self.buy_volume_usd,
            "sell_volume_usd": self.sell_volume_usd,
            "whale_count": self.whale_count,
            "created_at": self.created_at.isoformat(),
            "market_as_of": self.market_as_of.isoformat() if self.market_as_of else None,
            "is_stale": self.is_stale,
            "stale_reason": self.stale_reason,
        }


SENTIMENT_METRICS = frozenset(
    {
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
        "whale_count",
    }
)
