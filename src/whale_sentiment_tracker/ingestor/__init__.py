"""Data ingestion layer - whale transfer classification and windowing."""

from whale_sentiment_tracker.ingestor.classifier import (
    ClassificationBatch,
    classify,
    classify_batch,
    derive_flow_type,
)
from whale_sentiment_tracker.ingestor.models import (
    FlowType,
    NormalizedTransfer,
    OwnerType,
    WhaleEvent,
)
from whale_sentiment_tracker.ingestor.window import (
    ALL_SYMBOLS,
    TIMEFRAME_DURATIONS,
    WindowAggregator,
    WindowConfig,
    WindowState,
)

__all__ = [
    "ALL_SYMBOLS",
    "ClassificationBatch",
    "FlowType",
    "NormalizedTransfer",
    "OwnerType",
    "TIMEFRAME_DURATIONS",
    "WhaleEvent",
    "WindowAggregator",
    "WindowConfig",
    "WindowState",
    "classify",
    "classify_batch",
    "derive_flow_type",
]
