"""Tests for configuration loading."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from whale_sentiment_tracker.config import (
    AggregationSettings,
    DatabaseSettings,
    RedisSettings,
    SentimentSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Minimal valid environment, isolated from any local .env file."""
    monkeypatch.chdir("/")
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://tracker:secret@db:5432/whales")
    monkeypatch.setenv("REDIS_URL", "redis://:hunter2@cache:6379/0")
    clear_settings_cache()
    yield monkeypatch
    clear_settings_cache()


class TestAggregationSettings:
    def test_csv_lists_from_env(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("AGGREGATION_SYMBOLS", "btc, eth ,ALL")
        env.setenv("AGGREGATION_TIMEFRAMES", "1h,4h")

        settings = AggregationSettings()

        assert settings.symbols == ("BTC", "ETH", "ALL")
        assert settings.timeframes == ("1h", "4h")
        assert settings.tracked_symbols == ("ALL", "BTC", "ETH")

    def test_defaults(self, env: pytest.MonkeyPatch) -> None:
        settings = AggregationSettings()

        assert settings.timeframes == ("1h", "4h", "8h", "12h", "1d")
        assert settings.window_config().buffer_multiplier == 1.5

    def test_unknown_timeframe_rejected(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("AGGREGATION_TIMEFRAMES", "1h,2h")
        with pytest.raises(ValidationError):
            AggregationSettings()

    def test_buffer_multiplier_bounds(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("AGGREGATION_BUFFER_MULTIPLIER", "0.5")
        with pytest.raises(ValidationError):
            AggregationSettings()


class TestSentimentSettings:
    def test_weights_must_sum_to_one(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("SENTIMENT_WEIGHT_WHALE", "0.9")
        with pytest.raises(ValidationError, match="sum to 1"):
            SentimentSettings()

    def test_custom_weights(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("SENTIMENT_WEIGHT_GLOBAL", "0.1")
        env.setenv("SENTIMENT_WEIGHT_COINS", "0.1")
        env.setenv("SENTIMENT_WEIGHT_VOLUME", "0.1")
        env.setenv("SENTIMENT_WEIGHT_WHALE", "0.7")

        weights = SentimentSettings().weights()

        assert weights.whale_weight == 0.7


class TestConnectionSettings:
    def test_database_url_scheme(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("DATABASE_URL", "mysql://localhost/db")
        with pytest.raises(ValidationError):
            DatabaseSettings()

    def test_redis_url_scheme(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("REDIS_URL", "http://cache")
        with pytest.raises(ValidationError):
            RedisSettings()


class TestSettings:
    def test_get_settings_is_cached(self, env: pytest.MonkeyPatch) -> None:
        assert get_settings() is get_settings()

    def test_logging_level(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("LOG_LEVEL", "DEBUG")
        assert Settings().get_logging_level() == logging.DEBUG

    def test_redacted_summary_hides_passwords(self, env: pytest.MonkeyPatch) -> None:
        summary = Settings().redacted_summary()

        assert summary["database_url"] == "postgresql+asyncpg://tracker:***@db:5432/whales"
        assert summary["redis_url"] == "redis://:***@cache:6379/0"
        assert "secret" not in str(summary)
        assert "hunter2" not in str(summary)
