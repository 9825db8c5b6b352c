"""Alert formatting."""

from whale_sentiment_tracker.alerter.formatter import (
    format_pct,
    format_summary,
    format_usd,
    render_message,
)

__all__ = [
    "format_pct",
    "format_summary",
    "format_usd",
    "render_message",
]
