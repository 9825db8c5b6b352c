"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the Whale
Sentiment Tracker, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from whale_sentiment_tracker.errors import ConfigurationError
from whale_sentiment_tracker.ingestor.window import (
    ALL_SYMBOLS,
    DEFAULT_BUFFER_MULTIPLIER,
    DEFAULT_MIN_WHALE_USD,
    TIMEFRAME_DURATIONS,
    WindowConfig,
)
from whale_sentiment_tracker.sentiment.models import ComponentScales, SentimentWeights

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _split_csv(v: object) -> tuple[str, ...]:
    if isinstance(v, str):
        return tuple(p.strip() for p in v.split(",") if p.strip())
    if isinstance(v, (list, tuple)):
        return tuple(str(x).strip() for x in v)
    raise TypeError("Expected a comma-separated string or a list")


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL (or sqlite+aiosqlite) connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class AggregationSettings(BaseSettings):
    """Whale event windowing settings."""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_", extra="ignore")

    min_whale_usd: float = Field(
        default=DEFAULT_MIN_WHALE_USD,
        alias="AGGREGATION_MIN_WHALE_USD",
        ge=0.0,
        description="Minimum transfer size (USD) counted as a whale event",
    )
    buffer_multiplier: float = Field(
        default=DEFAULT_BUFFER_MULTIPLIER,
        alias="AGGREGATION_BUFFER_MULTIPLIER",
        ge=1.0,
        le=10.0,
        description="Fetch window = timeframe duration * multiplier",
    )
    symbols: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("BTC", "ETH", "XRP", "SOL", "BNB"),
        alias="AGGREGATION_SYMBOLS",
        description="Tracked symbols (comma-separated); ALL is always evaluated",
    )
    timeframes: Annotated[tuple[str, ...], NoDecode] = Field(
        default=tuple(TIMEFRAME_DURATIONS),
        alias="AGGREGATION_TIMEFRAMES",
        description="Timeframes to aggregate (comma-separated)",
    )

    @field_validator("symbols", mode="before")
    @classmethod
    def _parse_symbols(cls, v: object) -> tuple[str, ...]:
        return tuple(s.upper() for s in _split_csv(v))

    @field_validator("timeframes", mode="before")
    @classmethod
    def _parse_timeframes(cls, v: object) -> tuple[str, ...]:
        timeframes = _split_csv(v)
        unknown = [tf for tf in timeframes if tf not in TIMEFRAME_DURATIONS]
        if unknown:
            raise ValueError(f"Unknown timeframes {unknown}; expected {list(TIMEFRAME_DURATIONS)}")
        if not timeframes:
            raise ValueError("AGGREGATION_TIMEFRAMES must not be empty")
        return timeframes

    @property
    def tracked_symbols(self) -> tuple[str, ...]:
        """ALL followed by the configured symbols, without duplicates."""
        return tuple(dict.fromkeys((ALL_SYMBOLS, *self.symbols)))

    def window_config(self) -> WindowConfig:
        return WindowConfig(
            min_whale_usd=self.min_whale_usd,
            buffer_multiplier=self.buffer_multiplier,
        )


class SentimentSettings(BaseSettings):
    """SWSI weights and normalization scales."""

    model_config = SettingsConfigDict(env_prefix="SENTIMENT_", extra="ignore")

    weight_global: float = Field(default=0.25, alias="SENTIMENT_WEIGHT_GLOBAL", ge=0.0, le=1.0)
    weight_coins: float = Field(default=0.25, alias="SENTIMENT_WEIGHT_COINS", ge=0.0, le=1.0)
    weight_volume: float = Field(default=0.20, alias="SENTIMENT_WEIGHT_VOLUME", ge=0.0, le=1.0)
    weight_whale: float = Field(default=0.30, alias="SENTIMENT_WEIGHT_WHALE", ge=0.0, le=1.0)

    global_scale: float = Field(
        default=5.0,
        alias="SENTIMENT_GLOBAL_SCALE",
        gt=0.0,
        description="Market-cap % change that maps to a component value of 1.0",
    )
    coins_scale: float = Field(
        default=5.0,
        alias="SENTIMENT_COINS_SCALE",
        gt=0.0,
        description="Basket % change that maps to a component value of 1.0",
    )
    volume_scale: float = Field(
        default=50.0,
        alias="SENTIMENT_VOLUME_SCALE",
        gt=0.0,
        description="Volume % change that maps to a component value of 1.0",
    )

    @model_validator(mode="after")
    def _check_weights(self) -> SentimentSettings:
        try:
            self.weights()
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
        return self

    def weights(self) -> SentimentWeights:
        return SentimentWeights(
            global_change=self.weight_global,
            coins_change=self.weight_coins,
            volume_change=self.weight_volume,
            whale_weight=self.weight_whale,
        )

    def scales(self) -> ComponentScales:
        return ComponentScales(
            global_change_pct=self.global_scale,
            coins_change_pct=self.coins_scale,
            volume_change_pct=self.volume_scale,
        )


class AlertSettings(BaseSettings):
    """Alert rule thresholds."""

    model_config = SettingsConfigDict(env_prefix="ALERTS_", extra="ignore")

    max_per_cycle: int = Field(
        default=5,
        alias="ALERTS_MAX_PER_CYCLE",
        ge=1,
        le=1000,
        description="Maximum alerts emitted per evaluation cycle",
    )
    surge_window_minutes: int = Field(
        default=10,
        alias="ALERTS_SURGE_WINDOW_MINUTES",
        ge=1,
        le=60,
        description="Whale surge look-back window (minutes)",
    )
    surge_min_amount_usd: float = Field(
        default=100_000_000.0,
        alias="ALERTS_SURGE_MIN_AMOUNT_USD",
        ge=0.0,
        description="Per-transfer floor for whale surge (USD)",
    )
    surge_min_count: int = Field(
        default=3,
        alias="ALERTS_SURGE_MIN_COUNT",
        ge=1,
        le=1000,
        description="Transfers needed to trigger a whale surge",
    )
    sentiment_extreme_ratio: float = Field(
        default=0.8,
        alias="ALERTS_SENTIMENT_EXTREME_RATIO",
        ge=0.5,
        le=1.0,
        description="Bull or bear ratio that triggers a sentiment-extreme alert",
    )


class SchedulerSettings(BaseSettings):
    """Evaluation cycle scheduling."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    interval_seconds: float = Field(
        default=60.0,
        alias="SCHEDULER_INTERVAL_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Time between evaluation cycles",
    )
    max_cycle_seconds: float = Field(
        default=45.0,
        alias="SCHEDULER_MAX_CYCLE_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Upper bound on one cycle; results are discarded past it",
    )
    retention_days: int = Field(
        default=30,
        alias="SCHEDULER_RETENTION_DAYS",
        ge=1,
        le=3650,
        description="Whale events older than this are pruned",
    )
    retention_interval_hours: float = Field(
        default=6.0,
        alias="SCHEDULER_RETENTION_INTERVAL_HOURS",
        gt=0.0,
        le=168.0,
        description="How often the retention task runs",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from whale_sentiment_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.aggregation.timeframes)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Each nested BaseSettings needs the same env_file, otherwise it only
    # reads the process environment.
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    aggregation: AggregationSettings = Field(
        default_factory=lambda: AggregationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    sentiment: SentimentSettings = Field(
        default_factory=lambda: SentimentSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alerts: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scheduler: SchedulerSettings = Field(
        default_factory=lambda: SchedulerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Compute snapshots and alerts without publishing them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted."""
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "aggregation": {
                "min_whale_usd": str(self.aggregation.min_whale_usd),
                "buffer_multiplier": str(self.aggregation.buffer_multiplier),
                "symbols": ",".join(self.aggregation.symbols),
                "timeframes": ",".join(self.aggregation.timeframes),
            },
            "sentiment": {
                "weights": (
                    f"{self.sentiment.weight_global}/{self.sentiment.weight_coins}/"
                    f"{self.sentiment.weight_volume}/{self.sentiment.weight_whale}"
                ),
            },
            "alerts": {
                "max_per_cycle": str(self.alerts.max_per_cycle),
            },
            "scheduler": {
                "interval_seconds": str(self.scheduler.interval_seconds),
                "max_cycle_seconds": str(self.scheduler.max_cycle_seconds),
                "retention_days": str(self.scheduler.retention_days),
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
