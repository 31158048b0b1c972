"""Tests for the catalog snapshot cache."""
import asyncio

from nftmarket.domain.market.cache import ListingCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class CountingLoader:
    def __init__(self):
        self.calls = 0

    async def __call__(self) -> bytes:
        self.calls += 1
        return f"[{self.calls}]".encode()


class TestListingCache:
    """Snapshot freshness and invalidation."""

    async def test_serves_snapshot_within_ttl(self):
        clock = FakeClock()
        cache = ListingCache(ttl_seconds=10.0, clock=clock)
        loader = CountingLoader()

        assert await cache.get(loader) == b"[1]"
        clock.now += 9.9
        assert await cache.get(loader) == b"[1]"
        assert loader.calls == 1

    async def test_recomputes_after_ttl(self):
        clock = FakeClock()
        cache = ListingCache(ttl_seconds=10.0, clock=clock)
        loader = CountingLoader()

        await cache.get(loader)
        clock.now += 10.0
        assert await cache.get(loader) == b"[2]"

    async def test_invalidate_forces_recompute(self):
        cache = ListingCache(ttl_seconds=10.0, clock=FakeClock())
        loader = CountingLoader()

        await cache.get(loader)
        cache.invalidate()

        assert cache.peek() is None
        assert await cache.get(loader) == b"[2]"
        assert cache.version == 1

    async def test_stale_recompute_not_installed(self):
        """A load that overlaps an invalidation answers its caller but isn't cached."""
        cache = ListingCache(ttl_seconds=10.0, clock=FakeClock())
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_loader() -> bytes:
            started.set()
            await release.wait()
            return b"[old]"

        pending = asyncio.create_task(cache.get(slow_loader))
        await started.wait()
        cache.invalidate()
        release.set()

        assert await pending == b"[old]"
        assert cache.peek() is None

        loader = CountingLoader()
        assert await cache.get(loader) == b"[1]"
        assert cache.peek().payload == b"[1]"

    async def test_snapshot_age_counts_from_load_start(self):
        clock = FakeClock()
        cache = ListingCache(ttl_seconds=10.0, clock=clock)

        async def loader() -> bytes:
            clock.now += 4.0
            return b"[]"

        await cache.get(loader)
        assert cache.peek().taken_at == 100.0
        clock.now += 6.0
        assert cache.peek() is None
