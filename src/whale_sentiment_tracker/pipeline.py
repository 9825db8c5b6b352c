"""Main pipeline orchestrator for the Whale Sentiment Tracker.

This module provides the Pipeline class that wires the classifier, window
aggregator, SWSI scorer and alert evaluator together and drives them on a
fixed schedule.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from whale_sentiment_tracker.config import Settings, get_settings
from whale_sentiment_tracker.detector.cooldown import CooldownStore, RedisCooldownStore
from whale_sentiment_tracker.detector.evaluator import AlertEvaluator
from whale_sentiment_tracker.detector.models import Alert, AlertRule
from whale_sentiment_tracker.detector.rules import default_rules, validate_rules
from whale_sentiment_tracker.errors import TransientFetchError
from whale_sentiment_tracker.ingestor.classifier import classify_batch
from whale_sentiment_tracker.ingestor.models import WhaleEvent
from whale_sentiment_tracker.ingestor.sources import (
    DatabaseEventSource,
    DatabaseMarketDataSource,
    EventSource,
    MarketDataSource,
)
from whale_sentiment_tracker.ingestor.window import ALL_SYMBOLS, WindowAggregator, WindowState
from whale_sentiment_tracker.sentiment.models import MarketInputs, SWSISnapshot
from whale_sentiment_tracker.sentiment.scorer import SentimentScorer
from whale_sentiment_tracker.storage.database import DatabaseManager
from whale_sentiment_tracker.storage.repos import WhaleEventRepository
from whale_sentiment_tracker.storage.sink import DatabaseSink, PersistenceSink

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    cycles_completed: int = 0
    cycles_skipped: int = 0
    cycles_timed_out: int = 0
    cycles_aborted: int = 0
    records_ingested: int = 0
    records_dropped: int = 0
    snapshots_published: int = 0
    alerts_published: int = 0
    events_pruned: int = 0
    errors: int = 0
    last_cycle_at: datetime | None = None
    last_error: str | None = None


@dataclass
class CycleResult:
    """Everything one evaluation cycle computed."""

    started_at: datetime
    window_states: dict[tuple[str, str], WindowState] = field(default_factory=dict)
    snapshots: dict[str, SWSISnapshot] = field(default_factory=dict)
    markets: dict[str, MarketInputs] = field(default_factory=dict)
    alerts: list[Alert] = field(default_factory=list)


class Pipeline:
    """Periodic driver for whale sentiment evaluation.

    Each cycle:
        fetch events + market inputs (per timeframe, concurrently)
        -> classify -> aggregate per (symbol, timeframe)
        -> score SWSI per timeframe -> evaluate alert rules -> publish

    A tick that arrives while the previous cycle is still running is skipped.
    A cycle that exceeds ``max_cycle_seconds`` is abandoned and nothing it
    computed is published. Alert cooldowns start only when an alert is
    published, so abandoned and dry-run cycles leave them untouched.

    Example:
        ```python
        from whale_sentiment_tracker.config import get_settings
        from whale_sentiment_tracker.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        await pipeline.run()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        event_source: EventSource | None = None,
        market_source: MarketDataSource | None = None,
        sink: PersistenceSink | None = None,
        cooldowns: CooldownStore | None = None,
        db_manager: DatabaseManager | None = None,
        rules: Iterable[AlertRule] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Pure components are built (and validated) here; connections are
        opened in start() unless supplied.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, compute but do not publish. Overrides settings.dry_run.
            event_source: Whale event source. Defaults to the database.
            market_source: Market inputs source. Defaults to the database.
            sink: Snapshot and alert sink. Defaults to the database.
            cooldowns: Alert cooldown store. Defaults to Redis.
            db_manager: Database manager to use instead of creating one.
            rules: Alert rules. Defaults to default_rules() built from settings.

        Raises:
            ConfigurationError: If a rule is invalid.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        agg = self._settings.aggregation
        alerts = self._settings.alerts
        self._timeframes: tuple[str, ...] = tuple(agg.timeframes)
        self._symbols: tuple[str, ...] = agg.tracked_symbols
        self._aggregator = WindowAggregator(agg.window_config())
        self._scorer = SentimentScorer(
            weights=self._settings.sentiment.weights(),
            scales=self._settings.sentiment.scales(),
        )
        self._evaluator = AlertEvaluator(max_alerts_per_cycle=alerts.max_per_cycle)
        if rules is None:
            rules = default_rules(
                timeframes=self._timeframes,
                symbols=self._symbols,
                min_whale_usd=agg.min_whale_usd,
                surge_window_minutes=alerts.surge_window_minutes,
                surge_min_amount_usd=alerts.surge_min_amount_usd,
                surge_min_count=alerts.surge_min_count,
                sentiment_extreme_ratio=alerts.sentiment_extreme_ratio,
            )
        self._rules = validate_rules(rules)

        # Components (initialized in start() unless injected)
        self._redis: Redis | None = None
        self._db_manager = db_manager
        self._owns_db = db_manager is None
        self._event_source = event_source
        self._market_source = market_source
        self._sink = sink
        self._cooldowns = cooldowns

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._cycle_lock = asyncio.Lock()
        self._scheduler_task: asyncio.Task[None] | None = None
        self._retention_task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[Any] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def rules(self) -> list[AlertRule]:
        return list(self._rules)

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        settings = self._settings

        needs_db = self._event_source is None or self._market_source is None or self._sink is None
        if needs_db and self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)
            self._owns_db = True
            await self._db_manager.ping()

        if self._event_source is None:
            self._event_source = DatabaseEventSource(self._db_manager)
        if self._market_source is None:
            self._market_source = DatabaseMarketDataSource(self._db_manager)
        if self._sink is None:
            self._sink = DatabaseSink(self._db_manager)

        if self._cooldowns is None:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
            self._cooldowns = RedisCooldownStore(self._redis)

    def _start_background_services(self) -> None:
        self._scheduler_task = asyncio.create_task(self._run_scheduler_loop())
        if self._db_manager is not None:
            self._retention_task = asyncio.create_task(self._run_retention_loop())

    async def _stop_background_services(self) -> None:
        for attr in ("_scheduler_task", "_retention_task", "_cycle_task"):
            task: asyncio.Task[Any] | None = getattr(self, attr)
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            setattr(self, attr, None)

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._db_manager and self._owns_db:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _run_scheduler_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.scheduler.interval_seconds
        while not self._stop_event.is_set():
            if self._cycle_task is not None and not self._cycle_task.done():
                self._stats.cycles_skipped += 1
                logger.warning("Skipping tick: previous cycle still running")
            else:
                self._cycle_task = asyncio.create_task(self.run_cycle())

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

    async def _run_retention_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.scheduler.retention_interval_hours * 3600
        while not self._stop_event.is_set():
            try:
                await self.prune_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                logger.warning("Retention loop error: %s", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

    async def run_cycle(self, now: datetime | None = None) -> CycleResult | None:
        """Run one evaluation cycle and publish its results.

        Returns:
            The cycle result, or None if the cycle was skipped, aborted or
            timed out.
        """
        if self._cycle_lock.locked():
            self._stats.cycles_skipped += 1
            logger.warning("Skipping cycle: previous cycle still running")
            return None

        async with self._cycle_lock:
            now = now or datetime.now(UTC)
            timeout = self._settings.scheduler.max_cycle_seconds
            try:
                result = await asyncio.wait_for(self._compute_cycle(now), timeout=timeout)
            except TimeoutError:
                self._stats.cycles_timed_out += 1
                logger.error("Cycle at %s exceeded %.1fs; results discarded", now.isoformat(), timeout)
                return None
            except TransientFetchError as e:
                self._stats.cycles_aborted += 1
                self._stats.last_error = str(e)
                logger.error("Cycle at %s aborted: %s", now.isoformat(), e)
                return None

            await self._publish(result)
            self._stats.cycles_completed += 1
            self._stats.last_cycle_at = now
            logger.info(
                "Cycle complete: %d windows, %d snapshots, %d alerts",
                len(result.window_states),
                len(result.snapshots),
                len(result.alerts),
            )
            return result

    async def _fetch_timeframe(
        self, timeframe: str, now_ms: int
    ) -> tuple[int, list[dict[str, Any]], MarketInputs | None]:
        if self._event_source is None or self._market_source is None:
            raise RuntimeError("Pipeline sources are not initialized")

        # Reach back over the preceding window too, for volume ratios.
        since = min(
            self._aggregator.fetch_since(timeframe, now_ms),
            self._aggregator.history_since(timeframe, now_ms),
        )
        records, market = await asyncio.gather(
            self._event_source.fetch_events(
                ALL_SYMBOLS, self._aggregator.config.min_whale_usd, since
            ),
            self._market_source.fetch_market_snapshot(timeframe),
            return_exceptions=True,
        )
        # Events are required; market inputs degrade to stale reuse.
        if isinstance(records, BaseException):
            raise records
        if isinstance(market, TransientFetchError):
            logger.warning("Market inputs for %s unavailable: %s", timeframe, market)
            market = None
        elif isinstance(market, BaseException):
            raise market
        return since, records, market

    async def _compute_cycle(self, now: datetime) -> CycleResult:
        if self._cooldowns is None:
            raise RuntimeError("Cooldown store is not initialized")

        now_ms = int(now.timestamp() * 1000)
        fetched = await asyncio.gather(
            *(self._fetch_timeframe(tf, now_ms) for tf in self._timeframes)
        )

        result = CycleResult(started_at=now)
        for timeframe, (since, records, market) in zip(self._timeframes, fetched, strict=True):
            batch = classify_batch(records)
            self._stats.records_dropped += batch.dropped
            if market is not None:
                result.markets[timeframe] = market
            for symbol in self._symbols:
                result.window_states[(symbol, timeframe)] = self._aggregator.aggregate(
                    symbol, timeframe, batch.events, now_ms, history_since_ms=since * 1000
                )
            snapshot = self._scorer.score(
                timeframe, market, result.window_states[(ALL_SYMBOLS, timeframe)], now=now
            )
            if snapshot is not None:
                result.snapshots[timeframe] = snapshot

        result.alerts = await self._evaluator.select(
            self._rules,
            result.window_states,
            result.snapshots,
            self._cooldowns,
            now,
            markets=result.markets,
        )
        return result

    async def _publish(self, result: CycleResult) -> None:
        if self._dry_run:
            for alert in result.alerts:
                logger.info("[DRY RUN] Would publish alert %s: %s", alert.rule_id, alert.message)
            return
        if self._sink is None:
            raise RuntimeError("Persistence sink is not initialized")

        for snapshot in result.snapshots.values():
            try:
                await self._sink.publish_snapshot(snapshot)
                self._stats.snapshots_published += 1
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.error("Failed to publish %s snapshot: %s", snapshot.timeframe, e)

        if self._cooldowns is None:
            raise RuntimeError("Cooldown store is not initialized")

        published: list[Alert] = []
        for alert in result.alerts:
            if not await self._evaluator.commit(alert, self._cooldowns):
                continue
            try:
                await self._sink.publish_alert(alert)
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.error("Failed to publish alert %s: %s", alert.cooldown_key, e)
                await self._evaluator.release(alert, self._cooldowns)
                continue
            self._stats.alerts_published += 1
            published.append(alert)
        result.alerts = published

    async def ingest(self, records: Iterable[dict[str, Any]]) -> int:
        """Classify raw transfer records and upsert them by id.

        Malformed records and transfers below the whale threshold are dropped.

        Returns:
            Number of events written.
        """
        if self._db_manager is None:
            raise RuntimeError("Database is not initialized")

        batch = classify_batch(records)
        self._stats.records_dropped += batch.dropped
        min_usd = self._aggregator.config.min_whale_usd
        events: list[WhaleEvent] = [e for e in batch.events if e.amount_usd >= min_usd]
        if not events:
            return 0

        async with self._db_manager.get_async_session() as session:
            written = await WhaleEventRepository(session).upsert_many(events)
        self._stats.records_ingested += written
        logger.info("Ingested %d whale events (%d dropped)", written, batch.dropped)
        return written

    async def prune_expired(self, now: datetime | None = None) -> int:
        """Delete whale events older than the retention period."""
        if self._db_manager is None:
            raise RuntimeError("Database is not initialized")

        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=self._settings.scheduler.retention_days)
        async with self._db_manager.get_async_session() as session:
            deleted = await WhaleEventRepository(session).prune_before(int(cutoff.timestamp()))
        self._stats.events_pruned += deleted
        if deleted:
            logger.info("Pruned %d whale events older than %s", deleted, cutoff.isoformat())
        return deleted

    async def run_once(self, now: datetime | None = None) -> CycleResult | None:
        """Run a single cycle without starting the scheduler or retention loops.

        Raises:
            RuntimeError: If the pipeline is already running.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot run a single cycle in state {self._state}")

        self._state = PipelineState.STARTING
        try:
            await self._initialize_components()
            self._state = PipelineState.RUNNING
            return await self.run_cycle(now)
        finally:
            await self._cleanup()
            self._state = PipelineState.STOPPED

    async def run(self) -> None:
        """Start the pipeline and run until interrupted."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
