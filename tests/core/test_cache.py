"""Tests for the QueryCache protocol and InMemoryQueryCache."""

from __future__ import annotations

import asyncio

import pytest

from careline.core.cache import InMemoryQueryCache, QueryCache, key_matches, normalize_key


class TestKeys:
    def test_normalize(self):
        assert normalize_key("patients") == ("patients",)
        assert normalize_key(("patient", "p-1")) == ("patient", "p-1")

    def test_prefix_matching(self):
        assert key_matches(("patients", "open"), ("patients",))
        assert not key_matches(("patient", "p-1"), ("patients",))
        assert key_matches(("anything",), None)


class TestInMemoryQueryCache:
    """Basic reads, writes and invalidation."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryQueryCache(), QueryCache)

    def test_get_set_remove(self):
        cache = InMemoryQueryCache()
        assert cache.get(("patient", "p-1")) is None

        cache.set(("patient", "p-1"), {"name": "Ada"})
        assert cache.contains(("patient", "p-1"))
        assert cache.get(("patient", "p-1")) == {"name": "Ada"}
        assert cache.size() == 1

        cache.remove(("patient", "p-1"))
        cache.remove(("patient", "p-1"))
        assert not cache.contains(("patient", "p-1"))

    def test_string_and_tuple_keys_are_equivalent(self):
        cache = InMemoryQueryCache()
        cache.set("patients", [1])
        assert cache.get(("patients",)) == [1]

    def test_invalidate_prefix(self):
        cache = InMemoryQueryCache()
        cache.set(("patients",), [])
        cache.set(("patients", "open"), [])
        cache.set(("providers",), [])

        assert cache.invalidate(("patients",)) == 2
        assert cache.is_stale(("patients", "open"))
        assert not cache.is_stale(("providers",))
        assert cache.get(("patients",)) == []
        assert sorted(cache.stale_keys()) == [("patients",), ("patients", "open")]

    def test_invalidate_all(self):
        cache = InMemoryQueryCache()
        cache.set(("a",), 1)
        cache.set(("b",), 2)
        assert cache.invalidate(None) == 2
        assert cache.is_stale(("a",)) and cache.is_stale(("b",))

    def test_set_clears_stale(self):
        cache = InMemoryQueryCache()
        cache.set(("a",), 1)
        cache.invalidate(("a",))
        cache.set(("a",), 2)
        assert not cache.is_stale(("a",))

    def test_age_seconds(self):
        cache = InMemoryQueryCache()
        assert cache.age_seconds(("a",)) is None
        cache.set(("a",), 1)
        assert cache.age_seconds(("a",)) >= 0


class TestTrackedFetch:
    """Fetch sharing and cancellation."""

    @pytest.mark.asyncio
    async def test_fetch_stores_result(self):
        cache = InMemoryQueryCache()

        async def loader() -> list[str]:
            return ["p-1"]

        assert await cache.fetch(("patients",), loader) == ["p-1"]
        assert cache.get(("patients",)) == ["p-1"]
        assert not cache.is_pending(("patients",))

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_load(self):
        cache = InMemoryQueryCache()
        loads = 0

        async def loader() -> int:
            nonlocal loads
            loads += 1
            await asyncio.sleep(0.01)
            return loads

        results = await asyncio.gather(cache.fetch(("n",), loader), cache.fetch(("n",), loader))
        assert results == [1, 1]
        assert loads == 1

    @pytest.mark.asyncio
    async def test_cancel_pending_never_writes(self):
        cache = InMemoryQueryCache()
        cache.set(("a",), "current")

        async def loader() -> str:
            await asyncio.sleep(0.05)
            return "from-server"

        read = asyncio.create_task(cache.fetch(("a",), loader))
        await asyncio.sleep(0)

        assert cache.cancel_pending(("a",)) is True
        cache.set(("a",), "optimistic")

        assert await read == "optimistic"
        await asyncio.sleep(0.06)
        assert cache.get(("a",)) == "optimistic"

    def test_cancel_pending_without_fetch(self):
        assert InMemoryQueryCache().cancel_pending(("a",)) is False

    @pytest.mark.asyncio
    async def test_loader_error_propagates(self):
        cache = InMemoryQueryCache()

        async def loader() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await cache.fetch(("a",), loader)
        assert not cache.contains(("a",))


class TestHeldKeys:
    """A held key is never loaded over."""

    @pytest.mark.asyncio
    async def test_fetch_serves_held_value_without_loading(self):
        cache = InMemoryQueryCache()
        cache.set(("a",), "optimistic")
        cache.hold(("a",))
        calls = 0

        async def loader() -> str:
            nonlocal calls
            calls += 1
            return "from-server"

        assert await cache.fetch(("a",), loader) == "optimistic"
        assert calls == 0
        assert not cache.is_pending(("a",))

    @pytest.mark.asyncio
    async def test_load_finishing_after_hold_does_not_write(self):
        cache = InMemoryQueryCache()
        cache.set(("a",), "current")
        gate = asyncio.Event()

        async def loader() -> str:
            await gate.wait()
            return "from-server"

        read = asyncio.create_task(cache.fetch(("a",), loader))
        await asyncio.sleep(0)
        cache.hold(("a",))
        cache.set(("a",), "optimistic")
        gate.set()

        assert await read == "optimistic"
        assert cache.get(("a",)) == "optimistic"

    @pytest.mark.asyncio
    async def test_release_restores_loading(self):
        cache = InMemoryQueryCache()
        cache.hold("a")
        assert cache.is_held(("a",))
        cache.release(("a",))
        cache.release(("a",))
        assert not cache.is_held("a")

        async def loader() -> str:
            return "from-server"

        assert await cache.fetch(("a",), loader) == "from-server"
        assert cache.get(("a",)) == "from-server"
