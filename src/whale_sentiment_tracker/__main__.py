"""Command-line entry point.

Usage:
    python -m whale_sentiment_tracker run        # scheduler until SIGINT/SIGTERM
    python -m whale_sentiment_tracker once       # a single evaluation cycle
    python -m whale_sentiment_tracker init-db    # create tables (dev only; use alembic in prod)
    python -m whale_sentiment_tracker prune      # apply the retention policy once
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from whale_sentiment_tracker.alerter.formatter import format_summary
from whale_sentiment_tracker.config import Settings, get_settings
from whale_sentiment_tracker.detector.cooldown import InMemoryCooldownStore
from whale_sentiment_tracker.pipeline import Pipeline
from whale_sentiment_tracker.storage.database import DatabaseManager

logger = logging.getLogger("whale_sentiment_tracker")


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _run(settings: Settings, *, dry_run: bool | None) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(pipeline.stop()))
    await pipeline.run()


async def _once(settings: Settings, *, dry_run: bool | None) -> int:
    result = await Pipeline(settings, dry_run=dry_run).run_once()
    if result is None:
        return 1
    for alert in result.alerts:
        print(format_summary(alert.to_dict()))
    return 0


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


async def _prune(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    # Pruning never touches cooldowns; skip the Redis connection.
    pipeline = Pipeline(settings, db_manager=db, cooldowns=InMemoryCooldownStore())
    try:
        deleted = await pipeline.prune_expired()
        logger.info("Pruned %d events", deleted)
    finally:
        await db.dispose_async()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="whale_sentiment_tracker")
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=("run", "once", "init-db", "prune"),
    )
    parser.add_argument("--dry-run", action="store_true", default=None, help="Do not publish results")
    args = parser.parse_args(argv)

    settings = get_settings()
    _configure_logging(settings)
    logger.info("Settings: %s", settings.redacted_summary())

    if args.command == "run":
        asyncio.run(_run(settings, dry_run=args.dry_run))
        return 0
    if args.command == "once":
        return asyncio.run(_once(settings, dry_run=args.dry_run))
    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        return 0
    asyncio.run(_prune(settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
