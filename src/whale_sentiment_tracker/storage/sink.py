"""Persistence sink for computed snapshots and fired alerts."""

from __future__ import annotations

import logging
from typing import Protocol

from whale_sentiment_tracker.detector.models import Alert
from whale_sentiment_tracker.sentiment.models import SWSISnapshot
from whale_sentiment_tracker.storage.database import DatabaseManager
from whale_sentiment_tracker.storage.repos import AlertRepository, SentimentSnapshotRepository

logger = logging.getLogger(__name__)


class PersistenceSink(Protocol):
    async def publish_snapshot(self, snapshot: SWSISnapshot) -> None: ...

    async def publish_alert(self, alert: Alert) -> None: ...


class DatabaseSink:
    """Writes snapshots (idempotent upsert) and alerts (append-only)."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def publish_snapshot(self, snapshot: SWSISnapshot) -> None:
        async with self._db.get_async_session() as session:
            await SentimentSnapshotRepository(session).upsert(snapshot)
        logger.debug("Published SWSI snapshot %s @ %s", snapshot.timeframe, snapshot.created_at)

    async def publish_alert(self, alert: Alert) -> None:
        async with self._db.get_async_session() as session:
            await AlertRepository(session).insert(alert)
        logger.debug("Published alert %s", alert.cooldown_key)
