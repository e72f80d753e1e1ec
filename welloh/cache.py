"""Cache abstraction with TTL support."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class CacheInterface(ABC):
    """Abstract cache interface."""

    @abstractmethod
    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        """Get cached value if exists and not expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryCache(CacheInterface):
    """
    In-memory cache with per-read TTL.

    The TTL is checked on read so quotes and slower-moving data (history,
    market overview) can share one cache with different freshness rules.
    """

    def __init__(self, default_ttl: int = 600):
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self.default_ttl = default_ttl

    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        if key not in self._cache:
            return None

        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        value, timestamp = self._cache[key]
        if time.monotonic() - timestamp > ttl:
            del self._cache[key]
            logger.debug("Cache miss (expired): %s", key)
            return None

        logger.debug("Cache hit: %s", key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = (value, time.monotonic())
        logger.debug("Cache set: %s", key)

    def clear(self) -> None:
        count = len(self._cache)
        self._cache.clear()
        logger.info("Cache cleared: %d items removed", count)

    def cleanup(self, ttl_seconds: Optional[int] = None) -> int:
        """Remove expired items, return count of removed items."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        now = time.monotonic()
        expired_keys = [
            key for key, (_, timestamp) in self._cache.items()
            if now - timestamp > ttl
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.info("Cache cleanup: %d items removed", len(expired_keys))
        return len(expired_keys)

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._cache)}


async def purge_periodically(cache: InMemoryCache, interval: float) -> None:
    """Evict expired entries every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        removed = cache.cleanup()
        logger.debug("Cache purge: %d removed, %d kept", removed, cache.stats()["size"])
