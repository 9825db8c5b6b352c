"""Rolling-window aggregation of whale events per (symbol, timeframe).

A WindowState is a recomputed view: every cycle it is rebuilt from the events
fetched from the store, filtered by the exact counting cutoff and the whale
threshold. Nothing is carried over between cycles, so an event can never leak
into another window or outlive its duration.

The fetch window is wider than the counting window by ``buffer_multiplier``
so that late-arriving events near the boundary are already in hand on the
next cycle; the inclusion test always uses the exact cutoff.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta

from whale_sentiment_tracker.errors import ConfigurationError
from whale_sentiment_tracker.ingestor.models import DIRECTIONAL_FLOWS, FlowType, WhaleEvent

logger = logging.getLogger(__name__)

ALL_SYMBOLS = "ALL"

DEFAULT_MIN_WHALE_USD = 10_000_000.0
DEFAULT_BUFFER_MULTIPLIER = 1.5

TIMEFRAME_DURATIONS: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "8h": timedelta(hours=8),
    "12h": timedelta(hours=12),
    "1d": timedelta(days=1),
}

# Stable ordering for tie-breaks (shortest first).
TIMEFRAME_ORDER: dict[str, int] = {tf: i for i, tf in enumerate(TIMEFRAME_DURATIONS)}

WINDOW_METRICS = frozenset(
    {
        "whale_count",
        "total_volume_usd",
        "buy_volume_usd",
        "sell_volume_usd",
        "net_flow_usd",
        "inflow_count",
        "outflow_count",
        "inflow_volume_usd",
        "outflow_volume_usd",
        "exchange_count",
        "internal_count",
        "defi_count",
        "largest_amount_usd",
        "previous_volume_usd",
        "volume_ratio",
    }
)


def duration_for(timeframe: str) -> timedelta:
    """Return the fixed duration of a timeframe.

    Raises:
        ConfigurationError: If the timeframe is not in the table.
    """
    try:
        return TIMEFRAME_DURATIONS[timeframe]
    except KeyError:
        raise ConfigurationError(
            f"Unknown timeframe {timeframe!r}; expected one of {sorted(TIMEFRAME_DURATIONS)}"
        ) from None


def dedupe_events(events: Iterable[WhaleEvent]) -> tuple[list[WhaleEvent], int]:
    """Sort by (timestamp, id) and drop repeated ids.

    Returns:
        Tuple of (unique events in timestamp order, duplicates dropped).
    """
    seen: set[str] = set()
    unique: list[WhaleEvent] = []
    duplicates = 0
    for event in sorted(events, key=lambda e: (e.timestamp, e.id)):
        if event.id in seen:
            duplicates += 1
            continue
        seen.add(event.id)
        unique.append(event)
    return unique, duplicates


@dataclass(frozen=True)
class WindowState:
    """Aggregated whale activity for one (symbol, timeframe) window.

    Attributes:
        symbol: Asset code, or ALL for the combined window.
        timeframe: Timeframe label (1h, 4h, ...).
        window_duration: Exact counting window length.
        as_of_ms: Evaluation time in epoch milliseconds.
        cutoff_ms: Inclusive lower bound of the counting window.
        events: Directional events inside the window, timestamp order.
        counts: Event counts for every flow type (diagnostics included).
        volumes: USD volume for every flow type.
        duplicates_dropped: Repeated ids removed before counting.
        previous_volume_usd: Directional volume of the preceding window of
            equal length, or None when the fetched events do not cover it.
    """

    symbol: str
    timeframe: str
    window_duration: timedelta
    as_of_ms: int
    cutoff_ms: int
    events: tuple[WhaleEvent, ...] = ()
    counts: dict[FlowType, int] = field(default_factory=dict)
    volumes: dict[FlowType, float] = field(default_factory=dict)
    duplicates_dropped: int = 0
    previous_volume_usd: float | None = None

    @property
    def buy_volume_usd(self) -> float:
        """Outflow volume: capital leaving exchanges."""
        return self.volumes.get(FlowType.OUTFLOW, 0.0)

    @property
    def sell_volume_usd(self) -> float:
        """Inflow volume: capital entering exchanges."""
        return self.volumes.get(FlowType.INFLOW, 0.0)

    @property
    def total_volume_usd(self) -> float:
        return self.buy_volume_usd + self.sell_volume_usd

    @property
    def net_flow_usd(self) -> float:
        return self.buy_volume_usd - self.sell_volume_usd

    @property
    def whale_count(self) -> int:
        return len(self.events)

    @property
    def inflow_count(self) -> int:
        return self.counts.get(FlowType.INFLOW, 0)

    @property
    def outflow_count(self) -> int:
        return self.counts.get(FlowType.OUTFLOW, 0)

    @property
    def largest_amount_usd(self) -> float:
        return max((e.amount_usd for e in self.events), default=0.0)

    @property
    def volume_ratio(self) -> float | None:
        """Directional volume relative to the preceding window."""
        if not self.previous_volume_usd:
            return None
        return self.total_volume_usd / self.previous_volume_usd

    def metric(self, name: str) -> float | None:
        """Look up a named metric (see WINDOW_METRICS); None if unavailable."""
        if name not in WINDOW_METRICS:
            raise ConfigurationError(f"Unknown window metric {name!r}")
        if name == "inflow_volume_usd":
            return self.sell_volume_usd
        if name == "outflow_volume_usd":
            return self.buy_volume_usd
        if name == "exchange_count":
            return float(self.counts.get(FlowType.EXCHANGE, 0))
        if name == "internal_count":
            return float(self.counts.get(FlowType.INTERNAL, 0))
        if name == "defi_count":
            return float(self.counts.get(FlowType.DEFI, 0))
        value = getattr(self, name)
        return float(value) if value is not None else None

    def to_dict(self) -> dict[str, object]:
        """Serialize the headline statistics."""
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "as_of_ms": self.as_of_ms,
            "cutoff_ms": self.cutoff_ms,
            "whale_count": self.whale_count,
            "total_volume_usd": self.total_volume_usd,
            "buy_volume_usd": self.buy_volume_usd,
            "sell_volume_usd": self.sell_volume_usd,
            "counts": {flow.value: count for flow, count in self.counts.items()},
            "duplicates_dropped": self.duplicates_dropped,
            "previous_volume_usd": self.previous_volume_usd,
        }


@dataclass(frozen=True)
class WindowConfig:
    min_whale_usd: float = DEFAULT_MIN_WHALE_USD
    buffer_multiplier: float = DEFAULT_BUFFER_MULTIPLIER

    def __post_init__(self) -> None:
        if self.buffer_multiplier < 1:
            raise ConfigurationError("buffer_multiplier must be >= 1")
        if self.min_whale_usd < 0:
            raise ConfigurationError("min_whale_usd must be >= 0")


class WindowAggregator:
    """Builds WindowStates from classified events.

    Example:
        ```python
        aggregator = WindowAggregator(WindowConfig(min_whale_usd=10_000_000))
        since = aggregator.fetch_since("1h", now_ms)
        events = classify_batch(await source.fetch_events("ALL", 10_000_000, since)).events
        state = aggregator.aggregate("BTC", "1h", events, now_ms)
        ```
    """

    def __init__(self, config: WindowConfig | None = None) -> None:
        self._config = config or WindowConfig()

    @property
    def config(self) -> WindowConfig:
        return self._config

    def fetch_since(self, timeframe: str, now_ms: int) -> int:
        """Return the buffered fetch cutoff for a timeframe, in Unix seconds."""
        duration_ms = duration_for(timeframe).total_seconds() * 1000
        return int((now_ms - duration_ms * self._config.buffer_multiplier) // 1000)

    def history_since(self, timeframe: str, now_ms: int) -> int:
        """Return the cutoff covering the window and the one before it, in Unix seconds."""
        duration_ms = duration_for(timeframe).total_seconds() * 1000
        return int((now_ms - duration_ms * 2) // 1000)

    def aggregate(
        self,
        symbol: str,
        timeframe: str,
        events: Iterable[WhaleEvent],
        now_ms: int,
        history_since_ms: int | None = None,
    ) -> WindowState:
        """Aggregate events into the (symbol, timeframe) window ending at now_ms.

        When history_since_ms shows the events reach back over the preceding
        window too, its directional volume is recorded for volume ratios.
        """
        duration = duration_for(timeframe)
        duration_ms = int(duration.total_seconds() * 1000)
        cutoff_ms = now_ms - duration_ms
        previous_cutoff_ms = cutoff_ms - duration_ms
        has_history = history_since_ms is not None and history_since_ms <= previous_cutoff_ms
        symbol = symbol.strip().upper()
        match_all = symbol == ALL_SYMBOLS

        unique, duplicates = dedupe_events(events)

        counts: dict[FlowType, int] = {flow: 0 for flow in FlowType}
        volumes: dict[FlowType, float] = {flow: 0.0 for flow in FlowType}
        directional: list[WhaleEvent] = []
        previous_volume = 0.0

        for event in unique:
            if event.amount_usd < self._config.min_whale_usd:
                continue
            if not match_all and event.symbol != symbol:
                continue
            if event.timestamp_ms < cutoff_ms:
                if (
                    event.timestamp_ms >= previous_cutoff_ms
                    and event.flow_type in DIRECTIONAL_FLOWS
                ):
                    previous_volume += event.amount_usd
                continue
            counts[event.flow_type] += 1
            volumes[event.flow_type] += event.amount_usd
            if event.flow_type in DIRECTIONAL_FLOWS:
                directional.append(event)

        if duplicates:
            logger.debug(
                "Dropped %d duplicate events while aggregating %s/%s", duplicates, symbol, timeframe
            )

        return WindowState(
            symbol=symbol,
            timeframe=timeframe,
            window_duration=duration,
            as_of_ms=now_ms,
            cutoff_ms=cutoff_ms,
            events=tuple(directional),
            counts=counts,
            volumes=volumes,
            duplicates_dropped=duplicates,
            previous_volume_usd=previous_volume if has_history else None,
        )
