"""Tests for the alert evaluator."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from whale_sentiment_tracker.detector.cooldown import InMemoryCooldownStore
from whale_sentiment_tracker.detector.evaluator import AlertEvaluator
from whale_sentiment_tracker.detector.models import (
    AlertRule,
    Comparator,
    MetricCondition,
    RuleState,
    SignalTier,
)
from whale_sentiment_tracker.detector.rules import default_rules
from whale_sentiment_tracker.ingestor.models import OwnerType, WhaleEvent
from whale_sentiment_tracker.ingestor.window import ALL_SYMBOLS, WindowAggregator, WindowState
from whale_sentiment_tracker.sentiment.indicators import IndicatorSnapshot
from whale_sentiment_tracker.sentiment.models import MarketInputs, SWSISnapshot

MakeEvent = Callable[..., WhaleEvent]


@pytest.fixture
def surge_events(make_event: MakeEvent) -> list[WhaleEvent]:
    """Three $120M exchange inflows plus one $120M wallet-to-wallet move."""
    return [
        make_event("in-0", seconds_ago=60, amount_usd=120_000_000),
        make_event("in-1", seconds_ago=120, amount_usd=120_000_000),
        make_event("in-2", seconds_ago=180, amount_usd=120_000_000),
        make_event(
            "internal",
            seconds_ago=90,
            amount_usd=120_000_000,
            from_type=OwnerType.WALLET,
            to_type=OwnerType.WALLET,
        ),
    ]


def build_windows(
    events: list[WhaleEvent], now_ms: int, symbols: tuple[str, ...] = (ALL_SYMBOLS,)
) -> dict[tuple[str, str], WindowState]:
    aggregator = WindowAggregator()
    return {(s, "1h"): aggregator.aggregate(s, "1h", events, now_ms) for s in symbols}


def overbought_market(now: datetime, *, rsi: float = 75.0) -> dict[str, MarketInputs]:
    indicators = IndicatorSnapshot(
        rsi=rsi,
        previous_rsi=rsi - 2,
        macd_line=1.0,
        macd_signal=0.9,
        macd_histogram=0.1,
        bb_upper=105.0,
        bb_middle=100.0,
        bb_lower=95.0,
        bb_width_history=(9.0, 9.0, 9.0),
    )
    return {"1h": MarketInputs(timeframe="1h", global_change=0.0, as_of=now, indicators=indicators)}


def make_snapshot(now: datetime, *, bull_ratio: float, is_stale: bool = False) -> SWSISnapshot:
    return SWSISnapshot(
        timeframe="1h",
        global_change=0.5,
        coins_change=0.5,
        volume_change=0.5,
        whale_weight=0.8,
        swsi_score=2 * bull_ratio - 1,
        bull_ratio=bull_ratio,
        bear_ratio=1 - bull_ratio,
        total_volume_usd=0.0,
        buy_volume_usd=0.0,
        sell_volume_usd=0.0,
        whale_count=0,
        created_at=now,
        is_stale=is_stale,
        stale_reason="market inputs unavailable" if is_stale else None,
    )


class TestWhaleSurge:
    """Surge detection over a single evaluation."""

    @pytest.mark.asyncio
    async def test_single_surge_alert(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        surge_rule = [r for r in default_rules() if r.name == "WHALE_SURGE"]
        alerts = await AlertEvaluator().evaluate(
            surge_rule, build_windows(surge_events, now_ms), {}, InMemoryCooldownStore(), now
        )

        assert len(alerts) == 1
        surge = alerts[0]
        assert surge.rule_id == "S-001"
        assert surge.metrics["whale_count"] == 3
        assert surge.metrics["total_volume_usd"] == 360_000_000
        assert surge.metrics["flow_type_distribution"] == {"inflow": 3}
        assert surge.severity == "critical"
        assert surge.priority == 100
        assert surge.created_at == now
        assert "3 large whales" in surge.message
        assert "$360.0M total" in surge.message
        assert surge.message.startswith("🚨")

    @pytest.mark.asyncio
    async def test_alerts_in_priority_order(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        alerts = await AlertEvaluator().evaluate(
            default_rules(),
            build_windows(surge_events, now_ms),
            {},
            InMemoryCooldownStore(),
            now,
            markets=overbought_market(now),
        )

        assert [a.rule_id for a in alerts] == ["S-001", "B-002", "C-002"]
        assert "3 exchange inflows totalling $360.0M, RSI 75.0" in alerts[1].message
        assert alerts[2].message.endswith("$120.0M inflow (all symbols 1h)")

    @pytest.mark.asyncio
    async def test_distribution_needs_overbought_market(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        alerts = await AlertEvaluator().evaluate(
            default_rules(),
            build_windows(surge_events, now_ms),
            {},
            InMemoryCooldownStore(),
            now,
            markets=overbought_market(now, rsi=65.0),
        )

        assert [a.rule_id for a in alerts] == ["S-001", "C-002"]

    @pytest.mark.asyncio
    async def test_surge_fires_once_across_symbol_windows(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        rules = default_rules(symbols=("BTC",))
        windows = build_windows(surge_events, now_ms, symbols=(ALL_SYMBOLS, "BTC"))

        alerts = await AlertEvaluator(max_alerts_per_cycle=10).evaluate(
            rules, windows, {}, InMemoryCooldownStore(), now
        )

        assert [(a.rule_id, a.symbol) for a in alerts] == [
            ("S-001", ALL_SYMBOLS),
            ("C-002", ALL_SYMBOLS),
            ("C-002", "BTC"),
        ]
        assert alerts[0].metrics["whale_count"] == 3

    @pytest.mark.asyncio
    async def test_surge_below_threshold(
        self, make_event: MakeEvent, now: datetime, now_ms: int
    ) -> None:
        events = [make_event(f"in-{i}", amount_usd=99_000_000) for i in range(3)]
        alerts = await AlertEvaluator().evaluate(
            default_rules(), build_windows(events, now_ms), {}, InMemoryCooldownStore(), now
        )

        assert "S-001" not in {a.rule_id for a in alerts}


class TestCooldowns:
    @pytest.mark.asyncio
    async def test_consecutive_cycles_fire_once(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        evaluator = AlertEvaluator()
        cooldowns = InMemoryCooldownStore()
        windows = build_windows(surge_events, now_ms)

        first = await evaluator.evaluate(default_rules(), windows, {}, cooldowns, now)
        second = await evaluator.evaluate(
            default_rules(), windows, {}, cooldowns, now + timedelta(minutes=1)
        )

        assert [a.rule_id for a in first].count("S-001") == 1
        assert second == []
        assert evaluator.rule_state("S-001", ALL_SYMBOLS, "1h") is RuleState.COOLDOWN

    @pytest.mark.asyncio
    async def test_fires_again_after_cooldown(
        self, make_event: MakeEvent, now: datetime, now_ms: int
    ) -> None:
        rule = AlertRule(
            id="T-001",
            name="ANY_INFLOW",
            description="test",
            tier=SignalTier.C,
            condition=MetricCondition("inflow_count", Comparator.GE, 1),
            message="{inflow_count:.0f} inflows",
            cooldown=timedelta(minutes=5),
        )
        evaluator = AlertEvaluator()
        cooldowns = InMemoryCooldownStore()
        windows = build_windows([make_event("in")], now_ms)

        fired = await evaluator.evaluate([rule], windows, {}, cooldowns, now)
        blocked = await evaluator.evaluate(
            [rule], windows, {}, cooldowns, now + timedelta(minutes=4)
        )
        refired = await evaluator.evaluate(
            [rule], windows, {}, cooldowns, now + timedelta(minutes=5)
        )

        assert len(fired) == 1
        assert blocked == []
        assert len(refired) == 1
        assert refired[0].message == "🐋 1 inflows"

    @pytest.mark.asyncio
    async def test_cap_does_not_consume_cooldown(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        evaluator = AlertEvaluator(max_alerts_per_cycle=1)
        cooldowns = InMemoryCooldownStore()
        windows = build_windows(surge_events, now_ms)

        first = await evaluator.evaluate(default_rules(), windows, {}, cooldowns, now)
        second = await evaluator.evaluate(
            default_rules(), windows, {}, cooldowns, now + timedelta(seconds=30)
        )

        assert [a.rule_id for a in first] == ["S-001"]
        assert evaluator.rule_state("C-002", ALL_SYMBOLS, "1h") is RuleState.ARMED
        assert [a.rule_id for a in second] == ["C-002"]
        assert evaluator.rule_state("S-001", ALL_SYMBOLS, "1h") is RuleState.COOLDOWN

    def test_cap_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            AlertEvaluator(max_alerts_per_cycle=0)


class TestSentimentRule:
    @pytest.mark.asyncio
    async def test_extreme_sentiment_fires(self, now: datetime, now_ms: int) -> None:
        snapshot = make_snapshot(now, bull_ratio=0.9)

        alerts = await AlertEvaluator().evaluate(
            default_rules(), build_windows([], now_ms), {"1h": snapshot}, InMemoryCooldownStore(), now
        )

        assert [a.rule_id for a in alerts] == ["A-101"]
        assert alerts[0].metrics["bull_ratio"] == 0.9
        assert "bull 90% / bear 10%" in alerts[0].message
        assert "SWSI +0.80" in alerts[0].message

    @pytest.mark.asyncio
    async def test_stale_snapshot_blocks_sentiment_rule(self, now: datetime, now_ms: int) -> None:
        snapshot = make_snapshot(now, bull_ratio=0.95, is_stale=True)
        evaluator = AlertEvaluator()

        alerts = await evaluator.evaluate(
            default_rules(), build_windows([], now_ms), {"1h": snapshot}, InMemoryCooldownStore(), now
        )

        assert alerts == []
        assert evaluator.rule_state("A-101", ALL_SYMBOLS, "1h") is RuleState.IDLE

    @pytest.mark.asyncio
    async def test_neutral_sentiment_quiet(self, now: datetime, now_ms: int) -> None:
        snapshot = make_snapshot(now, bull_ratio=0.55)

        alerts = await AlertEvaluator().evaluate(
            default_rules(), build_windows([], now_ms), {"1h": snapshot}, InMemoryCooldownStore(), now
        )

        assert alerts == []


class TestSelectAndCommit:
    """Selection reads cooldowns; only commit starts them."""

    @pytest.mark.asyncio
    async def test_select_leaves_cooldowns_untouched(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        evaluator = AlertEvaluator()
        cooldowns = InMemoryCooldownStore()
        windows = build_windows(surge_events, now_ms)

        first = await evaluator.select(default_rules(), windows, {}, cooldowns, now)
        again = await evaluator.select(default_rules(), windows, {}, cooldowns, now)

        assert [a.rule_id for a in first] == ["S-001", "C-002"]
        assert [a.rule_id for a in again] == ["S-001", "C-002"]
        assert await cooldowns.get("S-001:ALL:1h", now=now) is None
        assert evaluator.rule_state("S-001", ALL_SYMBOLS, "1h") is RuleState.ARMED

    @pytest.mark.asyncio
    async def test_commit_starts_cooldown_once(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        evaluator = AlertEvaluator()
        cooldowns = InMemoryCooldownStore()
        (surge, _) = await evaluator.select(
            default_rules(), build_windows(surge_events, now_ms), {}, cooldowns, now
        )

        assert await evaluator.commit(surge, cooldowns) is True
        assert evaluator.rule_state("S-001", ALL_SYMBOLS, "1h") is RuleState.FIRED
        assert await cooldowns.get(surge.cooldown_key, now=now + timedelta(minutes=59)) == now

        assert await evaluator.commit(surge, cooldowns) is False
        assert evaluator.rule_state("S-001", ALL_SYMBOLS, "1h") is RuleState.COOLDOWN

    @pytest.mark.asyncio
    async def test_release_allows_refire(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        evaluator = AlertEvaluator()
        cooldowns = InMemoryCooldownStore()
        windows = build_windows(surge_events, now_ms)
        (surge, _) = await evaluator.select(default_rules(), windows, {}, cooldowns, now)

        await evaluator.commit(surge, cooldowns)
        await evaluator.release(surge, cooldowns)

        assert evaluator.rule_state("S-001", ALL_SYMBOLS, "1h") is RuleState.ARMED
        retry = await evaluator.evaluate(
            default_rules(), windows, {}, cooldowns, now + timedelta(seconds=30)
        )
        assert "S-001" in {a.rule_id for a in retry}


class TestRuleStates:
    """Rule state follows the cooldown store, not just the last fire."""

    @pytest.mark.asyncio
    async def test_quiet_key_reports_cooldown_until_expiry(
        self, make_event: MakeEvent, now: datetime, now_ms: int
    ) -> None:
        rule = AlertRule(
            id="T-001",
            name="ANY_INFLOW",
            description="test",
            tier=SignalTier.C,
            condition=MetricCondition("inflow_count", Comparator.GE, 1),
            message="{inflow_count:.0f} inflows",
            cooldown=timedelta(minutes=5),
        )
        evaluator = AlertEvaluator()
        cooldowns = InMemoryCooldownStore()

        windows = build_windows([make_event("in")], now_ms)
        await evaluator.evaluate([rule], windows, {}, cooldowns, now)
        later = now + timedelta(minutes=2)
        await evaluator.evaluate(
            [rule], build_windows([], int(later.timestamp() * 1000)), {}, cooldowns, later
        )
        assert evaluator.rule_state("T-001", ALL_SYMBOLS, "1h") is RuleState.COOLDOWN

        expired = now + timedelta(minutes=6)
        await evaluator.evaluate(
            [rule], build_windows([], int(expired.timestamp() * 1000)), {}, cooldowns, expired
        )
        assert evaluator.rule_state("T-001", ALL_SYMBOLS, "1h") is RuleState.IDLE

    @pytest.mark.asyncio
    async def test_cooldown_set_elsewhere_is_reported(
        self, surge_events: list[WhaleEvent], now: datetime, now_ms: int
    ) -> None:
        evaluator = AlertEvaluator()
        cooldowns = InMemoryCooldownStore()
        await cooldowns.set("S-001:ALL:1h", now - timedelta(minutes=1), timedelta(hours=1))

        alerts = await evaluator.select(
            default_rules(), build_windows(surge_events, now_ms), {}, cooldowns, now
        )

        assert [a.rule_id for a in alerts] == ["C-002"]
        assert evaluator.rule_state("S-001", ALL_SYMBOLS, "1h") is RuleState.COOLDOWN
