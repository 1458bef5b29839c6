"""
上游数据源限流器：令牌桶 + 单资源最小间隔闸门。

CoinGecko 与 CryptoCompare 的免费额度都按每分钟请求数计费，
配置项来自 .env（COINGECKO_MAX_RPM、CRYPTOCOMPARE_MIN_INTERVAL 等）。
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

from env import parse_float, parse_int

DEFAULT_COINGECKO_RPM = 30
DEFAULT_COINGECKO_INTERVAL = 2.0
DEFAULT_CRYPTOCOMPARE_RPM = 50
DEFAULT_CRYPTOCOMPARE_INTERVAL = 5.0


@dataclass
class LimitConfig:
    provider: str
    rpm: int
    min_interval: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.rpm > 0


class TokenBucket:
    """异步令牌桶，按秒匀速补充。"""

    def __init__(self, capacity: int, refill_rate: float) -> None:
        self.capacity = max(capacity, 1)
        self.tokens = float(self.capacity)
        self.refill_rate = refill_rate
        self.updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                self.tokens = min(self.capacity, self.tokens + (now - self.updated_at) * self.refill_rate)
                self.updated_at = now
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return
                wait_for = (1.0 - self.tokens) / self.refill_rate
            await asyncio.sleep(min(max(wait_for, 0.05), 5.0))


class KeyGate:
    """同一 provider + 资源键的两次调用之间至少间隔 min_interval 秒。"""

    def __init__(self, min_interval: float) -> None:
        self.min_interval = min_interval
        self._last_seen: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def wait(self, key: str) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self._last_seen.get(key, float("-inf"))
                if elapsed >= self.min_interval:
                    self._last_seen[key] = now
                    return
                remaining = self.min_interval - elapsed
            await asyncio.sleep(min(max(remaining, 0.05), self.min_interval))


class RateLimiter:
    """按 provider 管理令牌桶与闸门。"""

    def __init__(self, configs: Dict[str, LimitConfig]) -> None:
        self._configs = {name.lower(): config for name, config in configs.items()}
        self._buckets: Dict[str, TokenBucket] = {}
        self._gates: Dict[str, KeyGate] = {}

    @asynccontextmanager
    async def limit(self, provider: str, key: Optional[str] = None) -> AsyncIterator[None]:
        config = self._configs.get(provider.lower())
        if config is None or not config.enabled:
            yield
            return

        bucket = self._buckets.get(config.provider)
        if bucket is None:
            bucket = TokenBucket(config.rpm, config.rpm / 60.0)
            self._buckets[config.provider] = bucket
        await bucket.acquire()

        if key and config.min_interval > 0:
            gate = self._gates.get(config.provider)
            if gate is None:
                gate = KeyGate(config.min_interval)
                self._gates[config.provider] = gate
            await gate.wait(f"{config.provider}:{key.lower()}")
        yield

    @classmethod
    def from_env(cls) -> "RateLimiter":
        configs = {
            "coingecko": LimitConfig(
                provider="coingecko",
                rpm=max(parse_int("COINGECKO_MAX_RPM", DEFAULT_COINGECKO_RPM), 0),
                min_interval=max(parse_float("COINGECKO_MIN_INTERVAL", DEFAULT_COINGECKO_INTERVAL), 0.0),
            ),
            "cryptocompare": LimitConfig(
                provider="cryptocompare",
                rpm=max(parse_int("CRYPTOCOMPARE_MAX_RPM", DEFAULT_CRYPTOCOMPARE_RPM), 0),
                min_interval=max(parse_float("CRYPTOCOMPARE_MIN_INTERVAL", DEFAULT_CRYPTOCOMPARE_INTERVAL), 0.0),
            ),
        }
        return cls(configs)

    @classmethod
    def disabled(cls) -> "RateLimiter":
        return cls({})
