"""Error taxonomy shared across the tracker.

Classification and aggregation degrade per record; only total unavailability
of the event source aborts a scheduling cycle. Stale market inputs are not an
error and are surfaced as a flag on the sentiment snapshot instead.
"""

from __future__ import annotations


class WhaleSentimentError(Exception):
    """Base class for tracker errors."""


class TransientFetchError(WhaleSentimentError):
    """Raised when an event or market source is unreachable or timed out.

    Retried on the next scheduled cycle, never in a loop within a cycle.
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"{source}: {message}")


class MalformedRecordError(WhaleSentimentError):
    """Raised when a raw transfer record is missing required fields."""

    def __init__(self, message: str, *, record_id: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message)


class ConfigurationError(WhaleSentimentError):
    """Raised at startup for invalid rules, timeframes or weights."""
