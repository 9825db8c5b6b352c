"""Alert message formatting.

Rule messages are ``str.format`` templates. Besides the raw triggering
metrics, templates may use human-readable variants of every ``*_usd``
metric (``total_volume`` for ``total_volume_usd`` and so on) and of the
ratio metrics (``bull_pct``, ``bear_pct``).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from whale_sentiment_tracker.ingestor.window import ALL_SYMBOLS

logger = logging.getLogger(__name__)

SEVERITY_ICONS = {
    "critical": "🚨",
    "high": "📈",
    "medium": "⚠️",
    "low": "🐋",
}


def format_usd(amount: float) -> str:
    """Format a USD amount compactly: $1.25B, $120.0M, $950.0K, $12.50."""
    sign = "-" if amount < 0 else ""
    value = abs(amount)
    if value >= 1_000_000_000:
        return f"{sign}${value / 1_000_000_000:.2f}B"
    if value >= 1_000_000:
        return f"{sign}${value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{sign}${value / 1_000:.1f}K"
    return f"{sign}${value:,.2f}"


def format_pct(ratio: float) -> str:
    return f"{ratio * 100:.0f}%"


def describe_scope(symbol: str, timeframe: str) -> str:
    """Human label for an evaluation key, e.g. ``BTC 4h`` or ``all symbols 1h``."""
    if symbol == ALL_SYMBOLS:
        return f"all symbols {timeframe}"
    return f"{symbol} {timeframe}"


def template_fields(symbol: str, timeframe: str, metrics: Mapping[str, Any]) -> dict[str, Any]:
    """Build the substitution map for a message template."""
    fields: dict[str, Any] = dict(metrics)
    for name, value in metrics.items():
        if name.endswith("_usd") and isinstance(value, (int, float)):
            fields[name.removesuffix("_usd")] = format_usd(float(value))
    for name in ("bull_ratio", "bear_ratio"):
        if name in metrics:
            fields[name.replace("_ratio", "_pct")] = format_pct(float(metrics[name]))
    if "time_window_seconds" in metrics:
        fields["window_minutes"] = int(metrics["time_window_seconds"]) // 60
    top = metrics.get("top_whales")
    if top:
        fields["largest_flow_type"] = top[0]["flow_type"]
    fields["symbol"] = symbol
    fields["timeframe"] = timeframe
    fields["scope"] = describe_scope(symbol, timeframe)
    return fields


def render_message(
    template: str,
    *,
    severity: str,
    symbol: str,
    timeframe: str,
    metrics: Mapping[str, Any],
) -> str:
    """Render a rule message template with an icon prefix.

    A template that references a field the metrics do not provide falls back
    to the raw template rather than failing the cycle.
    """
    fields = template_fields(symbol, timeframe, metrics)
    try:
        body = template.format(**fields)
    except (KeyError, IndexError, ValueError) as e:
        logger.warning("Could not render alert template %r: %s", template, e)
        body = template
    icon = SEVERITY_ICONS.get(severity)
    return f"{icon} {body}" if icon else body


def format_summary(alert_dict: Mapping[str, Any]) -> str:
    """One-line plain text summary of a serialized alert, for logs."""
    return (
        f"[{alert_dict['rule_id']}] {alert_dict['severity'].upper()} "
        f"{describe_scope(alert_dict['symbol'], alert_dict['timeframe'])}: "
        f"{alert_dict['message']}"
    )
