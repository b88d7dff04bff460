import pytest

from archive_streams.cache import NullCache, TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_get_or_compute_returns_cached_value_until_expiry():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    calls = {"count": 0}

    async def producer():
        calls["count"] += 1
        return f"value-{calls['count']}"

    assert await cache.get_or_compute("k", 60, producer) == "value-1"
    assert await cache.get_or_compute("k", 60, producer) == "value-1"
    assert calls["count"] == 1

    clock.now += 61
    assert await cache.get_or_compute("k", 60, producer) == "value-2"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_producer_errors_propagate_and_are_not_cached():
    cache = TTLCache(clock=FakeClock())

    async def failing():
        raise RuntimeError("upstream down")

    async def working():
        return "ok"

    with pytest.raises(RuntimeError):
        await cache.get_or_compute("k", 60, failing)
    assert cache.get("k") is None
    assert await cache.get_or_compute("k", 60, working) == "ok"


def test_set_purges_expired_entries_when_full():
    clock = FakeClock()
    cache = TTLCache(clock=clock, max_entries=2)
    cache.set("old", 1, 10)
    cache.set("fresh", 2, 100)
    clock.now += 20

    cache.set("new", 3, 100)

    assert len(cache) == 2
    assert cache.get("old") is None
    assert cache.get("fresh") == 2
    assert cache.get("new") == 3


def test_set_evicts_entry_closest_to_expiry_when_full_of_live_entries():
    cache = TTLCache(clock=FakeClock(), max_entries=2)
    cache.set("short", 1, 10)
    cache.set("long", 2, 100)

    cache.set("new", 3, 50)

    assert cache.get("short") is None
    assert cache.get("long") == 2
    assert cache.get("new") == 3


@pytest.mark.asyncio
async def test_null_cache_always_calls_producer():
    cache = NullCache()
    calls = {"count": 0}

    async def producer():
        calls["count"] += 1
        return calls["count"]

    assert await cache.get_or_compute("k", 60, producer) == 1
    assert await cache.get_or_compute("k", 60, producer) == 2
    assert len(cache) == 0
