"""Smart Whale Sentiment Index (SWSI) scorer.

Blends four normalized components into one score:

    swsi = w_g * global_change / global_scale
         + w_c * basket_change / coins_scale
         + w_v * volume_change / volume_scale
         + w_w * (buy - sell) / (buy + sell)

    bull_ratio = clamp01(0.5 + swsi / 2)
    bear_ratio = 1 - bull_ratio

Market components that cannot be fetched are never replaced with zero. The
last good components for the timeframe are reused and the snapshot is
flagged stale; with no prior computation the timeframe is skipped.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from whale_sentiment_tracker.ingestor.window import WindowState, duration_for
from whale_sentiment_tracker.sentiment.models import (
    DEFAULT_COIN_BASKET,
    ComponentScales,
    MarketInputs,
    SentimentWeights,
    SWSISnapshot,
    basket_change,
)

logger = logging.getLogger(__name__)


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.5
    return max(0.0, min(1.0, value))


def calculate_whale_weight(buy_volume_usd: float, sell_volume_usd: float) -> float:
    """Buy/sell imbalance in [-1, 1]; 0 when there is no directional volume."""
    total = buy_volume_usd + sell_volume_usd
    if total <= 0:
        return 0.0
    return (buy_volume_usd - sell_volume_usd) / total


@dataclass(frozen=True)
class MarketComponents:
    global_change: float
    coins_change: float
    volume_change: float
    as_of: datetime


class SentimentScorer:
    """Produces SWSISnapshots from market inputs and whale windows.

    The scorer keeps the last successfully computed market components per
    timeframe so that a failed upstream fetch degrades to a stale snapshot
    instead of a neutral one. One scorer instance should drive all cycles.
    """

    def __init__(
        self,
        *,
        weights: SentimentWeights | None = None,
        scales: ComponentScales | None = None,
        basket: Mapping[str, float] | None = None,
    ) -> None:
        self._weights = weights or SentimentWeights()
        self._scales = scales or ComponentScales()
        self._basket = dict(basket or DEFAULT_COIN_BASKET)
        self._last_market: dict[str, MarketComponents] = {}

    @property
    def weights(self) -> SentimentWeights:
        return self._weights

    def normalize_market(self, market: MarketInputs) -> MarketComponents | None:
        """Normalize market inputs, or None if any component is unavailable."""
        coins = basket_change(market.coin_changes, self._basket)
        if market.global_change is None or coins is None or market.volume_change is None:
            return None
        if not all(math.isfinite(v) for v in (market.global_change, coins, market.volume_change)):
            return None
        return MarketComponents(
            global_change=market.global_change / self._scales.global_change_pct,
            coins_change=coins / self._scales.coins_change_pct,
            volume_change=market.volume_change / self._scales.volume_change_pct,
            as_of=market.as_of,
        )

    def score(
        self,
        timeframe: str,
        market: MarketInputs | None,
        window_state: WindowState,
        *,
        now: datetime | None = None,
    ) -> SWSISnapshot | None:
        """Compute the SWSI snapshot for a timeframe.

        Args:
            timeframe: Timeframe label.
            market: Market inputs, or None if the fetch failed.
            window_state: Combined (ALL symbols) whale window for the timeframe.
            now: Snapshot creation time. Defaults to the current time.

        Returns:
            The snapshot, or None when no market components have ever been
            available for this timeframe (the cycle is skipped).
        """
        now = now or datetime.now(UTC)
        duration = duration_for(timeframe)

        stale_reason: str | None = None
        components = self.normalize_market(market) if market is not None else None
        if components is not None:
            self._last_market[timeframe] = components
        else:
            components = self._last_market.get(timeframe)
            if components is None:
                logger.warning(
                    "Skipping SWSI for %s: market inputs unavailable and no prior components",
                    timeframe,
                )
                return None
            stale_reason = "market inputs unavailable; reusing last computed components"

        if stale_reason is None and now - components.as_of > duration:
            stale_reason = f"market inputs older than {timeframe}"

        whale_weight = calculate_whale_weight(
            window_state.buy_volume_usd, window_state.sell_volume_usd
        )

        w = self._weights
        swsi_score = (
            w.global_change * components.global_change
            + w.coins_change * components.coins_change
            + w.volume_change * components.volume_change
            + w.whale_weight * whale_weight
        )
        bull_ratio = clamp01(0.5 + swsi_score / 2)
        bear_ratio = 1.0 - bull_ratio

        if stale_reason:
            logger.warning("SWSI for %s is stale: %s", timeframe, stale_reason)

        return SWSISnapshot(
            timeframe=timeframe,
            global_change=components.global_change,
            coins_change=components.coins_change,
            volume_change=components.volume_change,
            whale_weight=whale_weight,
            swsi_score=swsi_score,
            bull_ratio=bull_ratio,
            bear_ratio=bear_ratio,
            total_volume_usd=window_state.total_volume_usd,
            buy_volume_usd=window_state.buy_volume_usd,
            sell_volume_usd=window_state.sell_volume_usd,
            whale_count=window_state.whale_count,
            created_at=now,
            market_as_of=components.as_of,
            is_stale=stale_reason is not None,
            stale_reason=stale_reason,
        )
