"""Read-through cache of month ledgers, keyed by (hostel_id, month_key).

Per key the cache moves Empty -> Fetching -> Fresh -> Stale -> Fetching -> Fresh.
A read of a Fresh key never touches the network. Concurrent reads of a key
share one fetch. Every invalidation bumps the key's generation, so a fetch
that started before the invalidation can never be stored as Fresh.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from hostel_ledger.client.transport import FeeRecord, PaymentRecord

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, str]
Fetch = Callable[[], Awaitable["CacheEntry"]]


class CacheState(str, Enum):
    EMPTY = "Empty"
    FETCHING = "Fetching"
    FRESH = "Fresh"
    STALE = "Stale"


@dataclass
class CacheEntry:
    """One fetched month ledger."""

    hostel_id: int
    month_key: str
    fee_periods: List[FeeRecord] = field(default_factory=list)
    payments: List[PaymentRecord] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    fetched_at: float = 0.0
    dirty: bool = False

    @property
    def key(self) -> CacheKey:
        return (self.hostel_id, self.month_key)


class MonthLedgerCache:
    """Month ledger cache with coalesced fetches and explicit invalidation."""

    def __init__(self, ttl_seconds: float = 0, clock: Callable[[], float] = time.monotonic):
        """Initialize an empty cache.

        Args:
            ttl_seconds: Age after which a Fresh entry turns Stale; 0 disables expiry
            clock: Monotonic clock used for fetched_at and TTL checks
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self._generations: Dict[CacheKey, int] = {}

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if entry.dirty:
            return False
        if self.ttl_seconds and self._clock() - entry.fetched_at >= self.ttl_seconds:
            return False
        return True

    def state(self, hostel_id: int, month_key: str) -> CacheState:
        key = (hostel_id, month_key)
        if key in self._inflight:
            return CacheState.FETCHING
        entry = self._entries.get(key)
        if entry is None:
            return CacheState.EMPTY
        return CacheState.FRESH if self._is_fresh(entry) else CacheState.STALE

    def peek(self, hostel_id: int, month_key: str) -> Optional[CacheEntry]:
        """Cached entry (fresh or not) without fetching."""
        return self._entries.get((hostel_id, month_key))

    def keys(self) -> List[CacheKey]:
        return list(self._entries)

    async def get(self, hostel_id: int, month_key: str, fetch: Fetch, force: bool = False) -> CacheEntry:
        """Return the entry for a key, fetching it unless it is Fresh.

        Args:
            hostel_id: Hostel ID
            month_key: Month in YYYY-MM format
            fetch: Coroutine factory producing a new CacheEntry for the key
            force: Treat the entry as Stale first (pull-to-refresh)

        Raises:
            Whatever fetch raises; the key is then left Stale or Empty
        """
        key = (hostel_id, month_key)
        if force:
            self.invalidate(hostel_id, month_key)

        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._fetch(key, fetch, self._generations.get(key, 0)))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._fetch_done(key, t))

        # Shielded so one cancelled reader does not cancel the shared fetch
        return await asyncio.shield(task)

    async def _fetch(self, key: CacheKey, fetch: Fetch, generation: int) -> CacheEntry:
        logger.debug("Fetching month ledger: hostel_id=%d month=%s", *key)
        entry = await fetch()
        entry.fetched_at = self._clock()

        if self._generations.get(key, 0) == generation:
            entry.dirty = False
            self._entries[key] = entry
        else:
            # Invalidated while in flight: hand the result to current readers only
            entry.dirty = True
            self._entries.setdefault(key, entry)
            logger.debug("Discarding superseded fetch: hostel_id=%d month=%s", *key)
        return entry

    def _fetch_done(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            entry = self._entries.get(key)
            if entry is not None:
                entry.dirty = True
            logger.warning("Month ledger fetch failed: hostel_id=%d month=%s error=%s", key[0], key[1], error)

    def invalidate(self, hostel_id: int, month_key: str) -> None:
        """Mark one key Stale; an in-flight fetch for it will not be stored as Fresh."""
        key = (hostel_id, month_key)
        self._generations[key] = self._generations.get(key, 0) + 1
        # Later readers start a new fetch instead of joining the superseded one
        self._inflight.pop(key, None)
        entry = self._entries.get(key)
        if entry is not None:
            entry.dirty = True

    def invalidate_hostel(self, hostel_id: int) -> None:
        """Mark every cached or in-flight month of a hostel Stale."""
        keys = {k for k in self._entries if k[0] == hostel_id}
        keys.update(k for k in self._inflight if k[0] == hostel_id)
        for key in keys:
            self.invalidate(*key)

    def invalidate_all(self) -> None:
        for key in set(self._entries) | set(self._inflight):
            self.invalidate(*key)


__all__ = ["CacheEntry", "CacheState", "MonthLedgerCache"]
