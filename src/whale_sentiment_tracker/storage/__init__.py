"""Storage layer - Database schemas and repositories."""

from whale_sentiment_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from whale_sentiment_tracker.storage.models import (
    AlertModel,
    Base,
    MarketSnapshotModel,
    SentimentSnapshotModel,
    WhaleEventModel,
)
from whale_sentiment_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    MarketSnapshotDTO,
    MarketSnapshotRepository,
    SentimentSnapshotRepository,
    WhaleEventDTO,
    WhaleEventRepository,
)
from whale_sentiment_tracker.storage.sink import DatabaseSink, PersistenceSink

__all__ = [
    "AlertDTO",
    "AlertModel",
    "AlertRepository",
    "Base",
    "DatabaseManager",
    "DatabaseSink",
    "MarketSnapshotDTO",
    "MarketSnapshotModel",
    "MarketSnapshotRepository",
    "PersistenceSink",
    "SentimentSnapshotModel",
    "SentimentSnapshotRepository",
    "WhaleEventDTO",
    "WhaleEventModel",
    "WhaleEventRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
