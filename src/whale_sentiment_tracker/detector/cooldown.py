"""Cooldown stores for alert rules.

The cooldown store is the only state carried between evaluation cycles.
Evaluation only reads it; an alert commits its cooldown with ``try_acquire``,
which checks and sets in one atomic step, when it is about to be published.
A publish that fails releases the key again with ``clear``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_REDIS_KEY_PREFIX = "whale_sentiment:cooldown:"


class CooldownStore(Protocol):
    """Cooldown persistence keyed by ``rule_id:symbol:timeframe``."""

    async def get(self, key: str, *, now: datetime | None = None) -> datetime | None:
        """Return when the key last fired, or None if it is not cooling down."""
        ...

    async def set(self, key: str, fired_at: datetime, ttl: timedelta) -> None:
        """Unconditionally start a cooldown."""
        ...

    async def try_acquire(self, key: str, fired_at: datetime, ttl: timedelta) -> bool:
        """Start a cooldown if none is active. Returns True if acquired."""
        ...

    async def clear(self, key: str) -> bool:
        """Drop a cooldown. Returns True if one existed."""
        ...


class RedisCooldownStore:
    """Redis-backed cooldowns using ``SET key value NX PX ttl``.

    Expiry is handled by Redis, so a key that exists is cooling down.
    """

    def __init__(self, redis: Redis, *, key_prefix: str = DEFAULT_REDIS_KEY_PREFIX) -> None:
        self._redis = redis
        self._key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str, *, now: datetime | None = None) -> datetime | None:
        # Redis expires keys itself; now is only used by clock-driven stores.
        value = await self._redis.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return datetime.fromisoformat(value)

    async def set(self, key: str, fired_at: datetime, ttl: timedelta) -> None:
        await self._redis.set(
            self._key(key),
            fired_at.isoformat(),
            px=_ttl_ms(ttl),
        )

    async def try_acquire(self, key: str, fired_at: datetime, ttl: timedelta) -> bool:
        # NX: only set if absent; a falsy reply means the cooldown is active
        was_set = await self._redis.set(
            self._key(key),
            fired_at.isoformat(),
            nx=True,
            px=_ttl_ms(ttl),
        )
        return bool(was_set)

    async def clear(self, key: str) -> bool:
        """Drop a cooldown. Returns True if one existed."""
        deleted = await self._redis.delete(self._key(key))
        return int(deleted) > 0


class InMemoryCooldownStore:
    """Process-local cooldowns for tests and single-instance runs."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[datetime, datetime]] = {}
        self._lock = asyncio.Lock()

    def _active(self, key: str, now: datetime) -> datetime | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        fired_at, expires_at = entry
        if now >= expires_at:
            del self._entries[key]
            return None
        return fired_at

    async def get(self, key: str, *, now: datetime | None = None) -> datetime | None:
        async with self._lock:
            return self._active(key, now or datetime.now(UTC))

    async def set(self, key: str, fired_at: datetime, ttl: timedelta) -> None:
        async with self._lock:
            self._entries[key] = (fired_at, fired_at + ttl)

    async def try_acquire(self, key: str, fired_at: datetime, ttl: timedelta) -> bool:
        # Expiry is measured against fired_at so callers driving a simulated
        # clock get deterministic cooldowns.
        async with self._lock:
            if self._active(key, fired_at) is not None:
                return False
            self._entries[key] = (fired_at, fired_at + ttl)
            return True

    async def clear(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None


def _ttl_ms(ttl: timedelta) -> int:
    return max(1, int(ttl.total_seconds() * 1000))
