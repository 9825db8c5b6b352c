"""Default alert rule table."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from whale_sentiment_tracker.errors import ConfigurationError
from whale_sentiment_tracker.ingestor.models import FlowType
from whale_sentiment_tracker.ingestor.window import ALL_SYMBOLS, DEFAULT_MIN_WHALE_USD
from whale_sentiment_tracker.detector.models import (
    AllOf,
    AlertRule,
    AnyOf,
    Comparator,
    FlowBalanceCondition,
    IndicatorCondition,
    MetricCondition,
    SentimentCondition,
    SignalTier,
    TransferBurstCondition,
)

DEFAULT_SURGE_WINDOW_MINUTES = 10
DEFAULT_SURGE_MIN_AMOUNT_USD = 100_000_000.0
DEFAULT_SURGE_MIN_COUNT = 3
DEFAULT_DISTRIBUTION_MIN_COUNT = 3
DEFAULT_DISTRIBUTION_MIN_BALANCE_USD = 10_000_000.0
DEFAULT_SPOTTED_WINDOW_MINUTES = 15
DEFAULT_SENTIMENT_EXTREME_RATIO = 0.8

# Recent transfers the indicator rules combine with.
RECENT_WHALE_WINDOW = timedelta(minutes=15)
CONFLUENCE_MIN_WHALE_USD = 5_000_000.0
CONFLUENCE_VOLUME_RATIO = 3.0
CONFLUENCE_MACD_HISTOGRAM = 0.5
CONFLUENCE_BB_WIDTH_PCT = 3.0
MOMENTUM_MIN_BALANCE_USD = 20_000_000.0
MOMENTUM_MAX_BALANCE_USD = 40_000_000.0
RSI_OVERBOUGHT = 70.0
RSI_UPTREND = 50.0
VOLATILITY_EXPANSION = 1.5
VOLUME_SPIKE_RATIO = 1.5
RSI_LEVEL_JUMP = 2.0
SQUEEZE_WIDTH_PCT = 2.0

INDICATOR_TIMEFRAME = "1h"
MOMENTUM_TIMEFRAME = "4h"


def default_rules(
    *,
    timeframes: Iterable[str] = ("1h",),
    symbols: Iterable[str] = (ALL_SYMBOLS,),
    min_whale_usd: float = DEFAULT_MIN_WHALE_USD,
    surge_window_minutes: int = DEFAULT_SURGE_WINDOW_MINUTES,
    surge_min_amount_usd: float = DEFAULT_SURGE_MIN_AMOUNT_USD,
    surge_min_count: int = DEFAULT_SURGE_MIN_COUNT,
    sentiment_extreme_ratio: float = DEFAULT_SENTIMENT_EXTREME_RATIO,
) -> list[AlertRule]:
    """Build the default rule table.

    Whale rules run on the shortest configured timeframe only, since their
    own short windows sit inside it; the sentiment rule runs on every
    timeframe. Everything except WHALE_SPOTTED looks at the combined window
    only: market indicators and SWSI are market-wide, and a surge is one
    market event however many symbols it touches.

    Indicator rules read the 1h market (A-002 the 4h one) and are left out
    when that timeframe is not configured.
    """
    timeframes = tuple(timeframes)
    if not timeframes:
        raise ConfigurationError("At least one timeframe is required")
    symbols = tuple(dict.fromkeys((ALL_SYMBOLS, *symbols)))
    whale_timeframes = timeframes[:1]
    has_1h = INDICATOR_TIMEFRAME in timeframes
    has_4h = MOMENTUM_TIMEFRAME in timeframes

    rules = [
        AlertRule(
            id="S-001",
            name="WHALE_SURGE",
            description="Burst of very large directional transfers in a short window",
            tier=SignalTier.S,
            condition=TransferBurstCondition(
                window=timedelta(minutes=surge_window_minutes),
                min_amount_usd=surge_min_amount_usd,
                min_count=surge_min_count,
            ),
            message=(
                "WHALE SURGE - {whale_count} large whales (>= {min_whale_size}) "
                "in {window_minutes} minutes, {total_volume} total ({scope})"
            ),
            timeframes=whale_timeframes,
        ),
    ]

    if has_1h and has_4h:
        rules.append(
            AlertRule(
                id="S-002",
                name="PERFECT_CONFLUENCE",
                description="Overbought 1h and 4h RSI backed by whales, volume, MACD and bands",
                tier=SignalTier.S,
                condition=AllOf(
                    (
                        IndicatorCondition("rsi", Comparator.GT, RSI_OVERBOUGHT, "1h"),
                        IndicatorCondition("rsi", Comparator.GT, RSI_OVERBOUGHT, "4h"),
                        TransferBurstCondition(
                            window=RECENT_WHALE_WINDOW,
                            min_amount_usd=CONFLUENCE_MIN_WHALE_USD,
                            min_count=1,
                            top_n=1,
                        ),
                        MetricCondition("volume_ratio", Comparator.GE, CONFLUENCE_VOLUME_RATIO),
                        IndicatorCondition(
                            "macd_histogram", Comparator.GT, CONFLUENCE_MACD_HISTOGRAM, "1h"
                        ),
                        IndicatorCondition(
                            "bb_width_pct", Comparator.GE, CONFLUENCE_BB_WIDTH_PCT, "1h"
                        ),
                    )
                ),
                message=(
                    "PERFECT CONFLUENCE - RSI {rsi_1h:.1f} (1h) / {rsi_4h:.1f} (4h), "
                    "whale volume x{volume_ratio:.1f}"
                ),
                timeframes=(INDICATOR_TIMEFRAME,),
            )
        )

    if has_4h:
        rules.append(
            AlertRule(
                id="A-002",
                name="WHALE_MOMENTUM_SYNC",
                description="Net exchange inflow in range while 4h momentum trends up",
                tier=SignalTier.A,
                condition=AllOf(
                    (
                        FlowBalanceCondition(
                            window=RECENT_WHALE_WINDOW,
                            min_usd=MOMENTUM_MIN_BALANCE_USD,
                            max_usd=MOMENTUM_MAX_BALANCE_USD,
                        ),
                        IndicatorCondition("macd_histogram", Comparator.GT, 0.0, "4h"),
                        IndicatorCondition("rsi", Comparator.GE, RSI_UPTREND, "4h"),
                        IndicatorCondition("rsi", Comparator.LE, RSI_OVERBOUGHT, "4h"),
                    )
                ),
                message=(
                    "Whale Momentum Sync - net flow {flow_balance} with RSI {rsi_4h:.1f} (4h)"
                ),
                timeframes=(MOMENTUM_TIMEFRAME,),
            )
        )

    if has_1h:
        rules.extend(
            [
                AlertRule(
                    id="B-002",
                    name="WHALE_DISTRIBUTION",
                    description="Repeated large exchange inflows into an overbought market",
                    tier=SignalTier.B,
                    condition=AllOf(
                        (
                            TransferBurstCondition(
                                window=RECENT_WHALE_WINDOW,
                                min_amount_usd=min_whale_usd,
                                min_count=DEFAULT_DISTRIBUTION_MIN_COUNT,
                                flow_types=frozenset({FlowType.INFLOW}),
                            ),
                            FlowBalanceCondition(
                                window=RECENT_WHALE_WINDOW,
                                min_usd=DEFAULT_DISTRIBUTION_MIN_BALANCE_USD,
                            ),
                            IndicatorCondition("rsi", Comparator.GT, RSI_OVERBOUGHT, "1h"),
                        )
                    ),
                    message=(
                        "Whale Distribution - {whale_count} exchange inflows "
                        "totalling {total_volume}, RSI {rsi_1h:.1f} ({scope})"
                    ),
                    timeframes=(INDICATOR_TIMEFRAME,),
                ),
                AlertRule(
                    id="B-003",
                    name="VOLATILITY_SPIKE",
                    description="Bollinger width expanding fast on rising whale volume",
                    tier=SignalTier.B,
                    condition=AllOf(
                        (
                            IndicatorCondition(
                                "bb_width_expansion", Comparator.GT, VOLATILITY_EXPANSION, "1h"
                            ),
                            MetricCondition("volume_ratio", Comparator.GE, VOLUME_SPIKE_RATIO),
                        )
                    ),
                    message=(
                        "Volatility Spike - band width x{bb_width_expansion_1h:.2f} "
                        "on whale volume x{volume_ratio:.1f}"
                    ),
                    timeframes=(INDICATOR_TIMEFRAME,),
                ),
                AlertRule(
                    id="C-001",
                    name="RSI_LEVEL_CHANGE",
                    description="RSI moved two or more decile levels",
                    tier=SignalTier.C,
                    condition=IndicatorCondition(
                        "rsi_level_change", Comparator.GE, RSI_LEVEL_JUMP, "1h"
                    ),
                    message=(
                        "RSI Level Change - level {previous_rsi_level_1h} -> {rsi_level_1h} "
                        "(RSI {rsi_1h:.1f})"
                    ),
                    timeframes=(INDICATOR_TIMEFRAME,),
                ),
                AlertRule(
                    id="C-003",
                    name="MACD_CROSS",
                    description="MACD line crossed its signal line",
                    tier=SignalTier.C,
                    condition=IndicatorCondition("macd_crossed", Comparator.GE, 1.0, "1h"),
                    message="MACD {macd_cross_1h} cross ({timeframe})",
                    timeframes=(INDICATOR_TIMEFRAME,),
                ),
                AlertRule(
                    id="C-006",
                    name="SQUEEZE_START",
                    description="Bollinger width below 2% of price",
                    tier=SignalTier.C,
                    condition=IndicatorCondition(
                        "bb_width_pct", Comparator.LT, SQUEEZE_WIDTH_PCT, "1h"
                    ),
                    message="BB Squeeze Started - width {bb_width_pct_1h:.2f}% of price",
                    timeframes=(INDICATOR_TIMEFRAME,),
                ),
            ]
        )

    rules.extend(
        [
            AlertRule(
                id="C-002",
                name="WHALE_SPOTTED",
                description="A single whale transfer with a clear direction",
                tier=SignalTier.C,
                condition=TransferBurstCondition(
                    window=timedelta(minutes=DEFAULT_SPOTTED_WINDOW_MINUTES),
                    min_amount_usd=min_whale_usd,
                    min_count=1,
                    top_n=1,
                ),
                message="Whale Spotted - {largest_amount} {largest_flow_type} ({scope})",
                timeframes=whale_timeframes,
                symbols=symbols,
            ),
            AlertRule(
                id="A-101",
                name="SENTIMENT_EXTREME",
                description="SWSI bull or bear ratio at an extreme",
                tier=SignalTier.A,
                condition=AnyOf(
                    (
                        SentimentCondition("bull_ratio", Comparator.GE, sentiment_extreme_ratio),
                        SentimentCondition("bear_ratio", Comparator.GE, sentiment_extreme_ratio),
                    )
                ),
                message=(
                    "Sentiment Extreme - SWSI {swsi_score:+.2f}, "
                    "bull {bull_pct} / bear {bear_pct} ({timeframe})"
                ),
                timeframes=timeframes,
                symbols=(ALL_SYMBOLS,),
            ),
        ]
    )
    return rules


def validate_rules(rules: Iterable[AlertRule]) -> list[AlertRule]:
    """Validate every rule and reject duplicate ids.

    Raises:
        ConfigurationError: On the first invalid rule.
    """
    seen: set[str] = set()
    validated = []
    for rule in rules:
        if rule.id in seen:
            raise ConfigurationError(f"Duplicate alert rule id {rule.id!r}")
        seen.add(rule.id)
        rule.validate()
        validated.append(rule)
    return validated
