"""Tests for the TTL cache."""

import asyncio

import pytest

from welloh import cache as cache_module
from welloh.cache import InMemoryCache, purge_periodically


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(cache_module.time, "monotonic", fake)
    return fake


def test_get_within_ttl(clock):
    cache = InMemoryCache(default_ttl=60)
    cache.set("quote:AAPL", 150)
    clock.now += 59
    assert cache.get("quote:AAPL") == 150


def test_per_read_ttl_overrides_default(clock):
    cache = InMemoryCache(default_ttl=600)
    cache.set("quote:AAPL", 150)
    clock.now += 20

    assert cache.get("quote:AAPL", ttl_seconds=15) is None
    assert cache.get("quote:AAPL") is None  # expired entries are dropped


def test_missing_key():
    assert InMemoryCache().get("nope") is None


def test_cleanup_and_stats(clock):
    cache = InMemoryCache(default_ttl=10)
    cache.set("old", 1)
    clock.now += 30
    cache.set("fresh", 2)

    assert cache.cleanup() == 1
    assert cache.stats() == {"size": 1}
    assert cache.get("fresh") == 2

    cache.clear()
    assert cache.stats() == {"size": 0}


def test_purge_periodically_evicts_expired_entries():
    cache = InMemoryCache(default_ttl=0)
    cache.set("quote:AAPL", 150)
    cache.set("quote:MSFT", 300)

    async def run():
        task = asyncio.create_task(purge_periodically(cache, 0.01))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())
    assert cache.stats() == {"size": 0}
