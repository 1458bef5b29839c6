"""
In-memory result cache with per-key single-flight refresh.

Entries are immutable and replaced whole on refresh, so readers never observe
a half-written value. Concurrent misses on the same key share one producer
task; that task is shielded so a caller abandoning its wait (timeout or
cancellation) neither cancels the refresh nor leaves the key wedged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from env import parse_float, parse_int

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STALE_GRACE = 300.0


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


@dataclass(frozen=True)
class CacheTTL:
    """Freshness windows per data family, in seconds."""

    market: int = 60
    news: int = 3600
    technical: int = 60
    sentiment: int = 3600
    prediction: int = 300

    @classmethod
    def from_env(cls) -> "CacheTTL":
        return cls(
            market=parse_int("TTL_MARKET", cls.market),
            news=parse_int("TTL_NEWS", cls.news),
            technical=parse_int("TTL_TECHNICAL", cls.technical),
            sentiment=parse_int("TTL_SENTIMENT", cls.sentiment),
            prediction=parse_int("TTL_PREDICTION", cls.prediction),
        )


class ResultCache:
    """TTL cache for async producers.

    ``stale_grace`` controls how long past expiry an entry may still be served
    when its refresh fails; beyond that the producer's error propagates.
    """

    def __init__(
        self,
        stale_grace: float = DEFAULT_STALE_GRACE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stale_grace = max(stale_grace, 0.0)
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    @classmethod
    def from_env(cls) -> "ResultCache":
        return cls(stale_grace=parse_float("CACHE_STALE_GRACE", DEFAULT_STALE_GRACE))

    async def get_or_compute(
        self,
        key: str,
        ttl: float,
        producer: Callable[[], Awaitable[T]],
    ) -> T:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            logger.debug("Cache hit: %s", key)
            return entry.value

        logger.debug("Cache miss: %s", key)
        return await asyncio.shield(self._start(key, ttl, producer))

    async def refresh(
        self,
        key: str,
        ttl: float,
        producer: Callable[[], Awaitable[T]],
    ) -> T:
        """Recompute ``key`` even if its entry is still fresh.

        Joins a refresh already in flight for the key. A failing producer
        falls back to the previous value within ``stale_grace``.
        """
        logger.debug("Cache refresh: %s", key)
        return await asyncio.shield(self._start(key, ttl, producer))

    def peek(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _start(self, key: str, ttl: float, producer: Callable[[], Awaitable[T]]) -> asyncio.Future:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(key, ttl, producer))
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._finish(k, done))
        return task

    async def _refresh(self, key: str, ttl: float, producer: Callable[[], Awaitable[T]]) -> T:
        previous = self._entries.get(key)
        try:
            value = await producer()
        except Exception as exc:
            if previous is not None and self._clock() < previous.expires_at + self.stale_grace:
                logger.warning("Refresh of %s failed, serving stale value: %s", key, exc)
                return previous.value
            raise
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        return value

    def _finish(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the outcome as retrieved even when every waiter has gone away.
        if not task.cancelled():
            task.exception()
