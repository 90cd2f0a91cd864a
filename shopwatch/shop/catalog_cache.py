"""Short-lived, single-flight cache for catalog fetches.

Polling every couple of seconds for many monitors of many users would
hammer the shop. The cache collapses that load:

- a fresh entry (younger than the TTL) is served without a network call
- concurrent misses for the same credentials share one in-flight request
- a failed fetch falls back to the last cached catalog, however old
- a periodic sweep evicts expired entries to bound memory
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from shopwatch import metrics
from shopwatch.config import settings
from shopwatch.shop.client import shop_client
from shopwatch.shop.schemas import Catalog

logger = logging.getLogger(__name__)

CatalogFetcher = Callable[[str, str], Awaitable[Catalog]]
CacheKey = tuple[str, str]


@dataclass
class CacheEntry:
    """A cached catalog and when it was fetched."""

    data: Catalog
    timestamp: float


class CatalogCache:
    """Per-credential catalog cache with in-flight request de-duplication."""

    def __init__(
        self,
        fetcher: CatalogFetcher,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize cache.

        Args:
            fetcher: Coroutine function (username, password) -> Catalog
            ttl_seconds: Freshness window (defaults to settings)
            clock: Monotonic time source
        """
        self._fetcher = fetcher
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.cache_ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._pending: dict[CacheKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp < self.ttl_seconds

    async def fetch(self, username: str, password: str) -> Catalog:
        """
        Return the catalog for a credential pair.

        Raises:
            Whatever the fetcher raises, when no cached entry exists to fall back on
        """
        key = (username, password)

        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            metrics.record_cache_lookup("hit")
            return entry.data

        task = self._pending.get(key)
        if task is not None:
            metrics.record_cache_lookup("joined")
        else:
            metrics.record_cache_lookup("miss")
            task = asyncio.create_task(self._load(key))
            self._pending[key] = task

        # A cancelled waiter must not cancel the shared request
        return await asyncio.shield(task)

    async def _load(self, key: CacheKey) -> Catalog:
        username, password = key
        try:
            data = await self._fetcher(username, password)
        except Exception as e:
            stale = self._entries.get(key)
            if stale is not None:
                logger.warning(
                    f"Catalog fetch failed for {username}, serving cached copy "
                    f"({self._clock() - stale.timestamp:.1f}s old): {e}"
                )
                metrics.record_cache_lookup("stale")
                return stale.data
            logger.error(f"Catalog fetch failed for {username}: {e}")
            raise
        else:
            self._entries[key] = CacheEntry(data=data, timestamp=self._clock())
            metrics.update_cache_size(len(self._entries))
            return data
        finally:
            self._pending.pop(key, None)

    def sweep(self) -> int:
        """
        Evict entries older than the TTL.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if now - entry.timestamp > self.ttl_seconds
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Catalog cache sweep removed {len(expired)} expired entries")
        metrics.update_cache_size(len(self._entries))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        metrics.update_cache_size(0)


# Global cache instance
catalog_cache = CatalogCache(shop_client.fetch_catalog)
