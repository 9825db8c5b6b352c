"""Data models for the detector module.

Alert rules are data, not code paths: each rule pairs a typed condition with
a tier and cooldown. Adding a rule means adding an AlertRule to the table.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from whale_sentiment_tracker.errors import ConfigurationError
from whale_sentiment_tracker.ingestor.models import DIRECTIONAL_FLOWS, FlowType
from whale_sentiment_tracker.ingestor.window import (
    ALL_SYMBOLS,
    TIMEFRAME_DURATIONS,
    WINDOW_METRICS,
    WindowState,
)
from whale_sentiment_tracker.sentiment.indicators import INDICATOR_METRICS, rsi_level
from whale_sentiment_tracker.sentiment.models import SENTIMENT_METRICS, MarketInputs, SWSISnapshot


class SignalTier(str, Enum):
    """Alert significance class."""

    S = "S"
    A = "A"
    B = "B"
    C = "C"

    @property
    def priority(self) -> int:
        return TIER_PRIORITY[self]

    @property
    def severity(self) -> str:
        return TIER_SEVERITY[self]

    @property
    def default_cooldown(self) -> timedelta:
        return TIER_COOLDOWN[self]


TIER_PRIORITY = {SignalTier.S: 100, SignalTier.A: 50, SignalTier.B: 20, SignalTier.C: 5}
TIER_SEVERITY = {
    SignalTier.S: "critical",
    SignalTier.A: "high",
    SignalTier.B: "medium",
    SignalTier.C: "low",
}
TIER_COOLDOWN = {
    SignalTier.S: timedelta(hours=1),
    SignalTier.A: timedelta(minutes=30),
    SignalTier.B: timedelta(minutes=10),
    SignalTier.C: timedelta(minutes=5),
}


class Comparator(str, Enum):
    GE = ">="
    GT = ">"
    LE = "<="
    LT = "<"

    def apply(self, value: float, threshold: float) -> bool:
        return _COMPARATOR_OPS[self](value, threshold)


_COMPARATOR_OPS: dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.GE: operator.ge,
    Comparator.GT: operator.gt,
    Comparator.LE: operator.le,
    Comparator.LT: operator.lt,
}


class RuleState(str, Enum):
    """Lifecycle of a rule for one (symbol, timeframe) key."""

    IDLE = "idle"
    ARMED = "armed"
    FIRED = "fired"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class EvaluationContext:
    """Inputs a condition may inspect."""

    window: WindowState
    snapshot: SWSISnapshot | None
    now: datetime
    markets: Mapping[str, MarketInputs] = field(default_factory=dict)


@dataclass(frozen=True)
class TransferBurstCondition:
    """At least min_count transfers of min_amount_usd within a short window.

    Only events of the given flow types are counted; by default the
    directional flows, so wallet-to-wallet moves never feed a burst.
    """

    window: timedelta
    min_amount_usd: float
    min_count: int
    flow_types: frozenset[FlowType] = DIRECTIONAL_FLOWS
    top_n: int = 3

    def evaluate(self, ctx: EvaluationContext) -> dict[str, Any] | None:
        cutoff = ctx.now - self.window
        matching = [
            e
            for e in ctx.window.events
            if e.flow_type in self.flow_types
            and e.amount_usd >= self.min_amount_usd
            and e.occurred_at >= cutoff
        ]
        if len(matching) < self.min_count:
            return None

        distribution: dict[str, int] = {}
        for e in matching:
            distribution[e.flow_type.value] = distribution.get(e.flow_type.value, 0) + 1
        largest = sorted(matching, key=lambda e: (-e.amount_usd, e.id))[: self.top_n]
        return {
            "whale_count": len(matching),
            "total_volume_usd": sum(e.amount_usd for e in matching),
            "largest_amount_usd": largest[0].amount_usd,
            "min_whale_size_usd": self.min_amount_usd,
            "time_window_seconds": int(self.window.total_seconds()),
            "flow_type_distribution": distribution,
            "top_whales": [
                {
                    "id": e.id,
                    "amount_usd": e.amount_usd,
                    "flow_type": e.flow_type.value,
                    "symbol": e.symbol,
                    "blockchain": e.blockchain,
                    "tier": e.tier,
                }
                for e in largest
            ],
        }

    def validate(self) -> None:
        if self.window <= timedelta(0):
            raise ConfigurationError("burst window must be positive")
        if self.min_count < 1:
            raise ConfigurationError("burst min_count must be >= 1")
        if not self.flow_types:
            raise ConfigurationError("burst flow_types must not be empty")


@dataclass(frozen=True)
class MetricCondition:
    """Compare a WindowState metric against a threshold."""

    metric: str
    comparator: Comparator
    threshold: float

    def evaluate(self, ctx: EvaluationContext) -> dict[str, Any] | None:
        value = ctx.window.metric(self.metric)
        if value is None or not self.comparator.apply(value, self.threshold):
            return None
        return {self.metric: value}

    def validate(self) -> None:
        if self.metric not in WINDOW_METRICS:
            raise ConfigurationError(f"Unknown window metric {self.metric!r}")


@dataclass(frozen=True)
class SentimentCondition:
    """Compare an SWSISnapshot field against a threshold.

    Stale snapshots never satisfy the condition unless allow_stale is set.
    """

    metric: str
    comparator: Comparator
    threshold: float
    allow_stale: bool = False

    def evaluate(self, ctx: EvaluationContext) -> dict[str, Any] | None:
        snapshot = ctx.snapshot
        if snapshot is None or (snapshot.is_stale and not self.allow_stale):
            return None
        value = snapshot.metric(self.metric)
        if not self.comparator.apply(value, self.threshold):
            return None
        return {
            self.metric: value,
            "swsi_score": snapshot.swsi_score,
            "bull_ratio": snapshot.bull_ratio,
            "bear_ratio": snapshot.bear_ratio,
        }

    def validate(self) -> None:
        if self.metric not in SENTIMENT_METRICS:
            raise ConfigurationError(f"Unknown sentiment metric {self.metric!r}")


@dataclass(frozen=True)
class IndicatorCondition:
    """Compare a technical indicator against a threshold.

    Reads the market inputs of ``timeframe``, or of the evaluated window's
    timeframe when unset. Missing indicators and market inputs older than
    their timeframe never satisfy the condition.
    """

    metric: str
    comparator: Comparator
    threshold: float
    timeframe: str | None = None

    def evaluate(self, ctx: EvaluationContext) -> dict[str, Any] | None:
        timeframe = self.timeframe or ctx.window.timeframe
        market = ctx.markets.get(timeframe)
        if market is None or market.indicators is None:
            return None
        if ctx.now - market.as_of > TIMEFRAME_DURATIONS[timeframe]:
            return None
        indicators = market.indicators
        value = indicators.metric(self.metric)
        if value is None or not self.comparator.apply(value, self.threshold):
            return None

        suffix = f"_{self.timeframe}" if self.timeframe else ""
        metrics: dict[str, Any] = {f"{self.metric}{suffix}": value}
        if self.metric == "rsi_level_change":
            metrics[f"rsi{suffix}"] = indicators.rsi
            metrics[f"rsi_level{suffix}"] = rsi_level(indicators.rsi)
            metrics[f"previous_rsi_level{suffix}"] = rsi_level(
                indicators.previous_rsi if indicators.previous_rsi is not None else 50.0
            )
        elif self.metric == "macd_crossed":
            metrics[f"macd_cross{suffix}"] = indicators.macd_cross
        elif self.metric.startswith("bb_"):
            metrics[f"bb_width{suffix}"] = indicators.bb_width
            metrics[f"bb_middle{suffix}"] = indicators.bb_middle
        return metrics

    def validate(self) -> None:
        if self.metric not in INDICATOR_METRICS:
            raise ConfigurationError(f"Unknown indicator metric {self.metric!r}")
        if self.timeframe is not None and self.timeframe not in TIMEFRAME_DURATIONS:
            raise ConfigurationError(f"Unknown indicator timeframe {self.timeframe!r}")


@dataclass(frozen=True)
class FlowBalanceCondition:
    """Exchange inflow minus outflow volume of recent transfers, in USD.

    Satisfied when the balance lies within [min_usd, max_usd]; either bound
    may be left open.
    """

    window: timedelta
    min_usd: float | None = None
    max_usd: float | None = None

    def evaluate(self, ctx: EvaluationContext) -> dict[str, Any] | None:
        cutoff = ctx.now - self.window
        inflow = 0.0
        outflow = 0.0
        for e in ctx.window.events:
            if e.occurred_at < cutoff:
                continue
            if e.flow_type is FlowType.INFLOW:
                inflow += e.amount_usd
            elif e.flow_type is FlowType.OUTFLOW:
                outflow += e.amount_usd

        balance = inflow - outflow
        if self.min_usd is not None and balance < self.min_usd:
            return None
        if self.max_usd is not None and balance > self.max_usd:
            return None
        return {
            "flow_balance_usd": balance,
            "inflow_volume_usd": inflow,
            "outflow_volume_usd": outflow,
            "time_window_seconds": int(self.window.total_seconds()),
        }

    def validate(self) -> None:
        if self.window <= timedelta(0):
            raise ConfigurationError("flow balance window must be positive")
        if self.min_usd is None and self.max_usd is None:
            raise ConfigurationError("flow balance needs min_usd or max_usd")
        if self.min_usd is not None and self.max_usd is not None and self.min_usd > self.max_usd:
            raise ConfigurationError("flow balance min_usd must not exceed max_usd")


@dataclass(frozen=True)
class AllOf:
    """True when every sub-condition is true; metrics are merged."""

    conditions: tuple[Condition, ...]

    def evaluate(self, ctx: EvaluationContext) -> dict[str, Any] | None:
        merged: dict[str, Any] = {}
        for condition in self.conditions:
            metrics = condition.evaluate(ctx)
            if metrics is None:
                return None
            merged.update(metrics)
        return merged

    def validate(self) -> None:
        if not self.conditions:
            raise ConfigurationError("AllOf requires at least one condition")
        for condition in self.conditions:
            condition.validate()


@dataclass(frozen=True)
class AnyOf:
    """True when at least one sub-condition is true; first match wins."""

    conditions: tuple[Condition, ...]

    def evaluate(self, ctx: EvaluationContext) -> dict[str, Any] | None:
        for condition in self.conditions:
            metrics = condition.evaluate(ctx)
            if metrics is not None:
                return metrics
        return None

    def validate(self) -> None:
        if not self.conditions:
            raise ConfigurationError("AnyOf requires at least one condition")
        for condition in self.conditions:
            condition.validate()


Condition = (
    TransferBurstCondition
    | MetricCondition
    | SentimentCondition
    | IndicatorCondition
    | FlowBalanceCondition
    | AllOf
    | AnyOf
)


@dataclass(frozen=True)
class AlertRule:
    """Static alert rule configuration.

    Attributes:
        id: Stable rule identifier (e.g. S-001).
        name: Short machine name (e.g. WHALE_SURGE).
        description: Human description.
        tier: Significance class; drives priority, severity and default cooldown.
        condition: Typed predicate over WindowState, SWSISnapshot and
            market indicators.
        message: Message template; formatted with the triggering metrics plus
            symbol and timeframe.
        timeframes: Timeframes the rule is evaluated on.
        symbols: Symbols the rule is evaluated on (ALL = combined window).
        cooldown: Minimum time between two fires for the same key.
    """

    id: str
    name: str
    description: str
    tier: SignalTier
    condition: Condition
    message: str
    timeframes: tuple[str, ...] = ("1h",)
    symbols: tuple[str, ...] = (ALL_SYMBOLS,)
    cooldown: timedelta | None = None

    @property
    def effective_cooldown(self) -> timedelta:
        return self.cooldown if self.cooldown is not None else self.tier.default_cooldown

    @property
    def priority(self) -> int:
        return self.tier.priority

    def applies_to(self, symbol: str, timeframe: str) -> bool:
        return timeframe in self.timeframes and symbol in self.symbols

    def validate(self) -> None:
        """Check the rule is well formed.

        Raises:
            ConfigurationError: If the rule references unknown timeframes or
                metrics, or has a non-positive cooldown.
        """
        if not self.id:
            raise ConfigurationError("Alert rule id must not be empty")
        for timeframe in self.timeframes:
            if timeframe not in TIMEFRAME_DURATIONS:
                raise ConfigurationError(f"Rule {self.id}: unknown timeframe {timeframe!r}")
        if not self.symbols:
            raise ConfigurationError(f"Rule {self.id}: no symbols")
        if self.effective_cooldown <= timedelta(0):
            raise ConfigurationError(f"Rule {self.id}: cooldown must be positive")
        try:
            self.condition.validate()
        except ConfigurationError as e:
            raise ConfigurationError(f"Rule {self.id}: {e}") from e


@dataclass(frozen=True)
class Alert:
    """An alert emitted by the evaluator.

    Attributes:
        rule_id: Rule that fired.
        rule_name: Machine name of the rule.
        tier: Rule tier.
        severity: Severity label derived from the tier.
        priority: Numeric priority derived from the tier.
        symbol: Symbol of the evaluated window.
        timeframe: Timeframe of the evaluated window.
        message: Human-readable message.
        metrics: Snapshot of the metrics that triggered the rule.
        created_at: When the alert was emitted.
    """

    rule_id: str
    rule_name: str
    tier: SignalTier
    severity: str
    priority: int
    symbol: str
    timeframe: str
    message: str
    metrics: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def cooldown_key(self) -> str:
        return cooldown_key(self.rule_id, self.symbol, self.timeframe)

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for persistence."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "tier": self.tier.value,
            "severity": self.severity,
            "priority": self.priority,
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "message": self.message,
            "metrics": self.metrics,
            "created_at": self.created_at.isoformat(),
        }


def cooldown_key(rule_id: str, symbol: str, timeframe: str) -> str:
    return f"{rule_id}:{symbol}:{timeframe}"
