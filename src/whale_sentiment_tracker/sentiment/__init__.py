"""Sentiment layer - Smart Whale Sentiment Index (SWSI) scoring."""

from whale_sentiment_tracker.sentiment.indicators import IndicatorSnapshot, compute_indicators
from whale_sentiment_tracker.sentiment.models import (
    DEFAULT_COIN_BASKET,
    ComponentScales,
    MarketInputs,
    SentimentWeights,
    SWSISnapshot,
)
from whale_sentiment_tracker.sentiment.scorer import SentimentScorer, calculate_whale_weight

__all__ = [
    "DEFAULT_COIN_BASKET",
    "ComponentScales",
    "IndicatorSnapshot",
    "MarketInputs",
    "SWSISnapshot",
    "SentimentScorer",
    "SentimentWeights",
    "calculate_whale_weight",
    "compute_indicators",
]
