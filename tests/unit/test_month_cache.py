"""Unit tests for MonthLedgerCache."""

import asyncio

import pytest

from hostel_ledger.client.cache import CacheEntry, CacheState, MonthLedgerCache
from hostel_ledger.services.errors import NetworkFailureError

pytestmark = pytest.mark.unit


class FakeFetcher:
    """Counts calls; optionally blocks until released or fails."""

    def __init__(self, hostel_id: int = 1, month_key: str = "2024-03"):
        self.hostel_id = hostel_id
        self.month_key = month_key
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.error: Exception | None = None

    async def __call__(self) -> CacheEntry:
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return CacheEntry(
            hostel_id=self.hostel_id,
            month_key=self.month_key,
            totals={"call": self.calls},
        )


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestReadThrough:
    @pytest.mark.asyncio
    async def test_empty_then_fresh(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        assert cache.state(1, "2024-03") == CacheState.EMPTY

        entry = await cache.get(1, "2024-03", fetch)
        again = await cache.get(1, "2024-03", fetch)

        assert entry is again
        assert fetch.calls == 1
        assert cache.state(1, "2024-03") == CacheState.FRESH
        assert not entry.dirty

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        cache = MonthLedgerCache()
        march, april = FakeFetcher(month_key="2024-03"), FakeFetcher(month_key="2024-04")

        await cache.get(1, "2024-03", march)
        await cache.get(1, "2024-04", april)
        await cache.get(1, "2024-03", march)

        assert (march.calls, april.calls) == (1, 1)
        assert sorted(cache.keys()) == [(1, "2024-03"), (1, "2024-04")]

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_fetch(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        fetch.gate = asyncio.Event()

        readers = [asyncio.create_task(cache.get(1, "2024-03", fetch)) for _ in range(3)]
        await fetch.started.wait()
        assert cache.state(1, "2024-03") == CacheState.FETCHING
        fetch.gate.set()
        entries = await asyncio.gather(*readers)

        assert fetch.calls == 1
        assert entries[0] is entries[1] is entries[2]
        assert cache.state(1, "2024-03") == CacheState.FRESH

    @pytest.mark.asyncio
    async def test_cancelled_reader_does_not_cancel_fetch(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        fetch.gate = asyncio.Event()

        first = asyncio.create_task(cache.get(1, "2024-03", fetch))
        second = asyncio.create_task(cache.get(1, "2024-03", fetch))
        await fetch.started.wait()
        first.cancel()
        fetch.gate.set()

        entry = await second
        assert entry.month_key == "2024-03"
        assert fetch.calls == 1


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_makes_stale_and_refetches(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        await cache.get(1, "2024-03", fetch)

        cache.invalidate(1, "2024-03")
        assert cache.state(1, "2024-03") == CacheState.STALE

        entry = await cache.get(1, "2024-03", fetch)
        assert fetch.calls == 2
        assert entry.totals == {"call": 2}
        assert cache.state(1, "2024-03") == CacheState.FRESH

    @pytest.mark.asyncio
    async def test_invalidate_during_fetch_is_not_lost(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        fetch.gate = asyncio.Event()

        reader = asyncio.create_task(cache.get(1, "2024-03", fetch))
        await fetch.started.wait()
        cache.invalidate(1, "2024-03")
        fetch.gate.set()
        stale_result = await reader

        assert stale_result.dirty
        assert cache.state(1, "2024-03") == CacheState.STALE

        fresh = await cache.get(1, "2024-03", fetch)
        assert fetch.calls == 2
        assert not fresh.dirty
        assert cache.state(1, "2024-03") == CacheState.FRESH

    @pytest.mark.asyncio
    async def test_force_refresh(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        await cache.get(1, "2024-03", fetch)
        await cache.get(1, "2024-03", fetch, force=True)
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_hostel(self):
        cache = MonthLedgerCache()
        await cache.get(1, "2024-03", FakeFetcher(1, "2024-03"))
        await cache.get(1, "2024-04", FakeFetcher(1, "2024-04"))
        await cache.get(2, "2024-03", FakeFetcher(2, "2024-03"))

        cache.invalidate_hostel(1)

        assert cache.state(1, "2024-03") == CacheState.STALE
        assert cache.state(1, "2024-04") == CacheState.STALE
        assert cache.state(2, "2024-03") == CacheState.FRESH

    @pytest.mark.asyncio
    async def test_invalidate_all(self):
        cache = MonthLedgerCache()
        await cache.get(1, "2024-03", FakeFetcher(1, "2024-03"))
        await cache.get(2, "2024-03", FakeFetcher(2, "2024-03"))
        cache.invalidate_all()
        assert {cache.state(1, "2024-03"), cache.state(2, "2024-03")} == {CacheState.STALE}

    def test_invalidate_unknown_key_is_noop(self):
        cache = MonthLedgerCache()
        cache.invalidate(1, "2024-03")
        assert cache.state(1, "2024-03") == CacheState.EMPTY


class TestTtl:
    @pytest.mark.asyncio
    async def test_entry_expires(self):
        clock = FakeClock()
        cache = MonthLedgerCache(ttl_seconds=60, clock=clock)
        fetch = FakeFetcher()
        await cache.get(1, "2024-03", fetch)

        clock.now += 59
        assert cache.state(1, "2024-03") == CacheState.FRESH
        clock.now += 1
        assert cache.state(1, "2024-03") == CacheState.STALE

        await cache.get(1, "2024-03", fetch)
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        cache = MonthLedgerCache(ttl_seconds=0, clock=clock)
        await cache.get(1, "2024-03", FakeFetcher())
        clock.now += 10**9
        assert cache.state(1, "2024-03") == CacheState.FRESH


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_first_fetch_leaves_empty(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        fetch.error = NetworkFailureError("offline")

        with pytest.raises(NetworkFailureError):
            await cache.get(1, "2024-03", fetch)
        assert cache.state(1, "2024-03") == CacheState.EMPTY

    @pytest.mark.asyncio
    async def test_failed_refetch_leaves_stale(self):
        cache = MonthLedgerCache()
        fetch = FakeFetcher()
        entry = await cache.get(1, "2024-03", fetch)

        fetch.error = NetworkFailureError("offline")
        with pytest.raises(NetworkFailureError):
            await cache.get(1, "2024-03", fetch, force=True)

        assert cache.state(1, "2024-03") == CacheState.STALE
        assert cache.peek(1, "2024-03") is entry

        fetch.error = None
        await cache.get(1, "2024-03", fetch)
        assert cache.state(1, "2024-03") == CacheState.FRESH
