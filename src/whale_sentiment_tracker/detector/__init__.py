"""Alert rules, cooldowns and evaluation."""

from whale_sentiment_tracker.detector.cooldown import (
    CooldownStore,
    InMemoryCooldownStore,
    RedisCooldownStore,
)
from whale_sentiment_tracker.detector.evaluator import AlertEvaluator
from whale_sentiment_tracker.detector.models import (
    Alert,
    AlertRule,
    AllOf,
    AnyOf,
    Comparator,
    MetricCondition,
    RuleState,
    SentimentCondition,
    SignalTier,
    TransferBurstCondition,
)
from whale_sentiment_tracker.detector.rules import default_rules, validate_rules

__all__ = [
    "Alert",
    "AlertEvaluator",
    "AlertRule",
    "AllOf",
    "AnyOf",
    "Comparator",
    "CooldownStore",
    "InMemoryCooldownStore",
    "MetricCondition",
    "RedisCooldownStore",
    "RuleState",
    "SentimentCondition",
    "SignalTier",
    "TransferBurstCondition",
    "default_rules",
    "validate_rules",
]
