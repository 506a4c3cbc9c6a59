"""
Purpose: TTL cache over the three order resource families.
What it does:
- Keeps one CacheEntry per CacheKey (available orders, active orders, delivery history)
- get(key, force_refresh): serve from memory while the entry is younger than the TTL,
  otherwise run the registered fetcher and store the result
- put / invalidate for explicit writes

Rule: a failed fetch never touches the existing entry; the error goes back to the caller.
Keys are independent of each other.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


class CacheKey(str, Enum):
    AVAILABLE_ORDERS = "availableOrders"
    ACTIVE_ORDERS = "activeOrders"
    DELIVERY_HISTORY = "deliveryHistory"


@dataclass(frozen=True)
class CacheEntry:
    data: Any = None
    fetched_at: Optional[float] = None
    valid: bool = False


EMPTY_ENTRY = CacheEntry()


class CacheStore:
    """
    Keyed, TTL-scoped memoization of the REST resources.

    fetchers maps each CacheKey to a zero-argument coroutine function that
    performs the network call. The clock is injectable so TTL behaviour can
    be tested without waiting five minutes.
    """

    def __init__(
        self,
        fetchers: Dict[CacheKey, Fetcher],
        *,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._fetchers = dict(fetchers)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {key: EMPTY_ENTRY for key in CacheKey}

    def entry(self, key: CacheKey) -> CacheEntry:
        return self._entries.get(key, EMPTY_ENTRY)

    def is_fresh(self, key: CacheKey) -> bool:
        entry = self.entry(key)
        if not entry.valid or entry.fetched_at is None:
            return False
        return (self._clock() - entry.fetched_at) < self.ttl_seconds

    async def get(self, key: CacheKey, force_refresh: bool = False) -> Any:
        """
        Return cached data when fresh, otherwise fetch and store.
        Fetch errors propagate and leave the previous entry untouched.
        """
        if not force_refresh and self.is_fresh(key):
            logger.debug("cache hit for %s", key.value)
            return self.entry(key).data

        fetcher = self._fetchers.get(key)
        if fetcher is None:
            raise KeyError(f"No fetcher registered for {key.value}")

        logger.debug("fetching %s (force_refresh=%s)", key.value, force_refresh)
        data = await fetcher()
        self.put(key, data)
        return data

    def put(self, key: CacheKey, data: Any) -> None:
        self._entries[key] = CacheEntry(data=data, fetched_at=self._clock(), valid=True)

    def invalidate(self, key: Optional[CacheKey] = None) -> None:
        """
        Clear one entry, or all of them when no key is given.
        """
        if key is None:
            self._entries = {cache_key: EMPTY_ENTRY for cache_key in CacheKey}
            return
        self._entries[key] = EMPTY_ENTRY
