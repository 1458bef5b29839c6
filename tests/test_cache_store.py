import asyncio

import pytest

from infra.cache_store import CacheTTL, ResultCache


class CountingProducer:
    def __init__(self, value="fresh", delay=0.0, error=None):
        self.value = value
        self.delay = delay
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return f"{self.value}-{self.calls}"


def test_concurrent_misses_share_one_producer(manual_clock):
    cache = ResultCache(clock=manual_clock)
    producer = CountingProducer(delay=0.02)

    async def scenario():
        return await asyncio.gather(*(cache.get_or_compute("market", 60, producer) for _ in range(10)))

    results = asyncio.run(scenario())

    assert producer.calls == 1
    assert results == ["fresh-1"] * 10


def test_hit_within_ttl_returns_same_object(manual_clock):
    cache = ResultCache(clock=manual_clock)

    async def producer():
        return {"price": 2000.0}

    async def scenario():
        first = await cache.get_or_compute("market", 60, producer)
        manual_clock.advance(59)
        second = await cache.get_or_compute("market", 60, producer)
        return first, second

    first, second = asyncio.run(scenario())
    assert first is second


def test_expired_entry_is_recomputed(manual_clock):
    cache = ResultCache(clock=manual_clock)
    producer = CountingProducer()

    async def scenario():
        await cache.get_or_compute("news", 10, producer)
        manual_clock.advance(11)
        return await cache.get_or_compute("news", 10, producer)

    assert asyncio.run(scenario()) == "fresh-2"
    assert producer.calls == 2


def test_failed_refresh_serves_stale_within_grace(manual_clock):
    cache = ResultCache(stale_grace=300, clock=manual_clock)
    producer = CountingProducer()

    async def scenario():
        await cache.get_or_compute("market", 60, producer)
        manual_clock.advance(120)
        producer.error = RuntimeError("upstream down")
        return await cache.get_or_compute("market", 60, producer)

    assert asyncio.run(scenario()) == "fresh-1"
    assert producer.calls == 2


def test_failed_refresh_beyond_grace_raises(manual_clock):
    cache = ResultCache(stale_grace=30, clock=manual_clock)
    producer = CountingProducer()

    async def scenario():
        await cache.get_or_compute("market", 60, producer)
        manual_clock.advance(120)
        producer.error = RuntimeError("upstream down")
        await cache.get_or_compute("market", 60, producer)

    with pytest.raises(RuntimeError, match="upstream down"):
        asyncio.run(scenario())


def test_error_without_entry_propagates_and_clears_inflight(manual_clock):
    cache = ResultCache(clock=manual_clock)
    producer = CountingProducer(error=ValueError("bad payload"))

    async def scenario():
        with pytest.raises(ValueError):
            await cache.get_or_compute("prediction", 60, producer)
        producer.error = None
        return await cache.get_or_compute("prediction", 60, producer)

    assert asyncio.run(scenario()) == "fresh-2"


def test_abandoned_caller_does_not_cancel_refresh(manual_clock):
    cache = ResultCache(clock=manual_clock)
    producer = CountingProducer(delay=0.05)

    async def scenario():
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(cache.get_or_compute("technical", 60, producer), timeout=0.01)
        return await cache.get_or_compute("technical", 60, producer)

    assert asyncio.run(scenario()) == "fresh-1"
    assert producer.calls == 1


def test_peek_and_invalidate(manual_clock):
    cache = ResultCache(clock=manual_clock)
    producer = CountingProducer()

    async def scenario():
        await cache.get_or_compute("sentiment", 60, producer)

    asyncio.run(scenario())
    assert cache.peek("sentiment") == "fresh-1"
    assert len(cache) == 1

    cache.invalidate("sentiment")
    assert cache.peek("sentiment") is None

    asyncio.run(scenario())
    manual_clock.advance(61)
    assert cache.peek("sentiment") is None
    cache.clear()
    assert len(cache) == 0


def test_ttl_from_env(monkeypatch):
    monkeypatch.setenv("TTL_MARKET", "15")
    monkeypatch.setenv("TTL_NEWS", "not-a-number")
    ttl = CacheTTL.from_env()

    assert ttl.market == 15
    assert ttl.news == 3600
    assert ttl.prediction == 300


def test_refresh_recomputes_fresh_entry(manual_clock):
    cache = ResultCache(clock=manual_clock)
    producer = CountingProducer()

    async def scenario():
        await cache.get_or_compute("market", 60, producer)
        manual_clock.advance(30)
        refreshed = await cache.refresh("market", 60, producer)
        manual_clock.advance(50)
        return refreshed, cache.peek("market")

    refreshed, cached = asyncio.run(scenario())

    assert refreshed == "fresh-2"
    assert cached == "fresh-2"
    assert producer.calls == 2


def test_refresh_joins_inflight_computation(manual_clock):
    cache = ResultCache(clock=manual_clock)
    producer = CountingProducer(delay=0.02)

    async def scenario():
        return await asyncio.gather(
            cache.get_or_compute("market", 60, producer),
            cache.refresh("market", 60, producer),
        )

    assert asyncio.run(scenario()) == ["fresh-1", "fresh-1"]
    assert producer.calls == 1


def test_failed_refresh_keeps_previous_value(manual_clock):
    cache = ResultCache(stale_grace=300, clock=manual_clock)
    producer = CountingProducer()

    async def scenario():
        await cache.get_or_compute("market", 60, producer)
        producer.error = RuntimeError("upstream down")
        return await cache.refresh("market", 60, producer)

    assert asyncio.run(scenario()) == "fresh-1"
    assert cache.peek("market") == "fresh-1"
