"""Tests for alert message formatting."""

from __future__ import annotations

import pytest

from whale_sentiment_tracker.alerter.formatter import (
    describe_scope,
    format_pct,
    format_summary,
    format_usd,
    render_message,
    template_fields,
)


class TestFormatUsd:
    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            (1_250_000_000, "$1.25B"),
            (120_000_000, "$120.0M"),
            (950_000, "$950.0K"),
            (12.5, "$12.50"),
            (0, "$0.00"),
            (-25_000_000, "-$25.0M"),
        ],
    )
    def test_compact(self, amount: float, expected: str) -> None:
        assert format_usd(amount) == expected


def test_format_pct() -> None:
    assert format_pct(0.8) == "80%"


def test_describe_scope() -> None:
    assert describe_scope("ALL", "1h") == "all symbols 1h"
    assert describe_scope("ETH", "4h") == "ETH 4h"


class TestTemplateFields:
    def test_derived_fields(self) -> None:
        fields = template_fields(
            "BTC",
            "1h",
            {
                "total_volume_usd": 360_000_000,
                "bull_ratio": 0.85,
                "time_window_seconds": 600,
                "top_whales": [{"flow_type": "outflow"}],
            },
        )

        assert fields["total_volume"] == "$360.0M"
        assert fields["total_volume_usd"] == 360_000_000
        assert fields["bull_pct"] == "85%"
        assert fields["window_minutes"] == 10
        assert fields["largest_flow_type"] == "outflow"
        assert fields["scope"] == "BTC 1h"


class TestRenderMessage:
    def test_icon_prefix(self) -> None:
        message = render_message(
            "{whale_count} whales ({scope})",
            severity="critical",
            symbol="ALL",
            timeframe="1h",
            metrics={"whale_count": 3},
        )
        assert message == "🚨 3 whales (all symbols 1h)"

    def test_unknown_severity_has_no_icon(self) -> None:
        message = render_message(
            "hello", severity="trivial", symbol="BTC", timeframe="1h", metrics={}
        )
        assert message == "hello"

    def test_missing_field_falls_back_to_template(self) -> None:
        message = render_message(
            "{missing} whales", severity="low", symbol="BTC", timeframe="1h", metrics={}
        )
        assert message == "🐋 {missing} whales"


def test_format_summary() -> None:
    summary = format_summary(
        {
            "rule_id": "S-001",
            "severity": "critical",
            "symbol": "ALL",
            "timeframe": "1h",
            "message": "surge",
        }
    )
    assert summary == "[S-001] CRITICAL all symbols 1h: surge"
