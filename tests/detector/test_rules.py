"""Tests for the default rule table and rule validation."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from whale_sentiment_tracker.detector.models import (
    AllOf,
    AlertRule,
    AnyOf,
    Comparator,
    MetricCondition,
    SentimentCondition,
    SignalTier,
    TransferBurstCondition,
)
from whale_sentiment_tracker.detector.rules import default_rules, validate_rules
from whale_sentiment_tracker.errors import ConfigurationError
from whale_sentiment_tracker.ingestor.window import ALL_SYMBOLS


@pytest.fixture
def rule() -> AlertRule:
    return AlertRule(
        id="T-001",
        name="TEST",
        description="test rule",
        tier=SignalTier.B,
        condition=MetricCondition("whale_count", Comparator.GE, 1),
        message="{whale_count:.0f} whales",
    )


class TestDefaultRules:
    def test_table_is_valid(self) -> None:
        rules = validate_rules(default_rules(timeframes=("1h", "4h"), symbols=("BTC", "ETH")))

        assert [r.id for r in rules] == [
            "S-001",
            "S-002",
            "A-002",
            "B-002",
            "B-003",
            "C-001",
            "C-003",
            "C-006",
            "C-002",
            "A-101",
        ]

    def test_only_whale_spotted_runs_per_symbol(self) -> None:
        rules = {r.id: r for r in default_rules(timeframes=("1h", "4h"), symbols=("BTC",))}

        assert rules["C-002"].symbols == (ALL_SYMBOLS, "BTC")
        for rule_id in ("S-001", "S-002", "A-002", "B-002", "B-003", "A-101"):
            assert rules[rule_id].symbols == (ALL_SYMBOLS,)

    def test_indicator_rules_follow_configured_timeframes(self) -> None:
        only_1h = {r.id for r in default_rules(timeframes=("1h",))}
        only_4h = {r.id for r in default_rules(timeframes=("4h",))}

        assert {"B-002", "B-003", "C-001", "C-003", "C-006"} <= only_1h
        assert not {"S-002", "A-002"} & only_1h
        assert "A-002" in only_4h
        assert not {"S-002", "B-002", "C-001"} & only_4h

    def test_whale_rules_use_first_timeframe(self) -> None:
        rules = {r.id: r for r in default_rules(timeframes=("1h", "4h", "1d"))}

        assert rules["S-001"].timeframes == ("1h",)
        assert rules["A-002"].timeframes == ("4h",)
        assert rules["A-101"].timeframes == ("1h", "4h", "1d")

    def test_surge_parameters(self) -> None:
        rules = {
            r.id: r
            for r in default_rules(
                surge_window_minutes=5, surge_min_amount_usd=50_000_000, surge_min_count=2
            )
        }
        condition = rules["S-001"].condition

        assert isinstance(condition, TransferBurstCondition)
        assert condition.window == timedelta(minutes=5)
        assert condition.min_amount_usd == 50_000_000
        assert condition.min_count == 2

    def test_tiers_and_cooldowns(self) -> None:
        rules = {r.id: r for r in default_rules()}

        assert rules["S-001"].effective_cooldown == timedelta(hours=1)
        assert rules["A-101"].priority > rules["B-002"].priority > rules["C-002"].priority

    def test_requires_a_timeframe(self) -> None:
        with pytest.raises(ConfigurationError):
            default_rules(timeframes=())


class TestValidation:
    def test_duplicate_ids(self, rule: AlertRule) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate"):
            validate_rules([rule, replace(rule, name="OTHER")])

    def test_unknown_timeframe(self, rule: AlertRule) -> None:
        with pytest.raises(ConfigurationError, match="timeframe"):
            replace(rule, timeframes=("2h",)).validate()

    def test_unknown_window_metric(self, rule: AlertRule) -> None:
        bad = replace(rule, condition=MetricCondition("whale_mood", Comparator.GE, 1))
        with pytest.raises(ConfigurationError, match="T-001"):
            bad.validate()

    def test_unknown_sentiment_metric(self, rule: AlertRule) -> None:
        bad = replace(rule, condition=SentimentCondition("is_stale", Comparator.GE, 1))
        with pytest.raises(ConfigurationError):
            bad.validate()

    def test_nested_conditions_validated(self, rule: AlertRule) -> None:
        bad = replace(
            rule,
            condition=AnyOf(
                (
                    MetricCondition("whale_count", Comparator.GE, 1),
                    AllOf((MetricCondition("nope", Comparator.LT, 0),)),
                )
            ),
        )
        with pytest.raises(ConfigurationError):
            bad.validate()

    def test_empty_composite(self, rule: AlertRule) -> None:
        with pytest.raises(ConfigurationError):
            replace(rule, condition=AllOf(())).validate()

    def test_non_positive_cooldown(self, rule: AlertRule) -> None:
        with pytest.raises(ConfigurationError, match="cooldown"):
            replace(rule, cooldown=timedelta(0)).validate()

    def test_burst_requires_positive_count(self, rule: AlertRule) -> None:
        bad = replace(
            rule,
            condition=TransferBurstCondition(
                window=timedelta(minutes=10), min_amount_usd=1, min_count=0
            ),
        )
        with pytest.raises(ConfigurationError):
            bad.validate()

    def test_no_symbols(self, rule: AlertRule) -> None:
        with pytest.raises(ConfigurationError):
            replace(rule, symbols=()).validate()
