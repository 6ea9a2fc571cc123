"""Tests for OptimisticMutationCoordinator — apply, commit, rollback, conflicts."""

from __future__ import annotations

import asyncio

import pytest
import structlog

from careline.core.errors import MutationConflictError
from careline.execution.optimistic import MutationStatus, OptimisticMutationCoordinator
from careline.execution.retry import RetryPolicy

KEY = ("referral", "r-1")
FAST = RetryPolicy(max_retries=2, base_delay_ms=1)


@pytest.fixture
def coordinator(orchestrator, cache, notifier) -> OptimisticMutationCoordinator:
    return OptimisticMutationCoordinator(orchestrator, cache, notifier)


# ── Commit ───────────────────────────────────────────────────────────────


class TestCommit:
    @pytest.mark.asyncio
    async def test_authoritative_value_replaces_optimistic(self, coordinator, cache):
        cache.set(KEY, {"status": "pending"})

        async def op() -> dict:
            return {"status": "sent", "updated_by": "server"}

        result = await coordinator.mutate(KEY, {"status": "sent"}, op, policy=FAST)

        assert result == {"status": "sent", "updated_by": "server"}
        assert cache.get(KEY) == {"status": "sent", "updated_by": "server"}

    @pytest.mark.asyncio
    async def test_optimistic_value_visible_during_operation(self, coordinator, cache):
        cache.set(KEY, {"status": "pending"})
        observed: list[object] = []

        async def op() -> dict:
            observed.append(cache.get(KEY))
            observed.append(coordinator.pending(KEY).status)
            return {"status": "sent"}

        await coordinator.mutate(KEY, {"status": "sent", "local": True}, op, policy=FAST)

        assert observed == [{"status": "sent", "local": True}, MutationStatus.PENDING]
        assert coordinator.pending(KEY) is None

    @pytest.mark.asyncio
    async def test_related_keys_invalidated(self, coordinator, cache):
        cache.set(("patients",), ["p-1"])
        cache.set(("referrals", "open"), ["r-1"])
        cache.set(("providers",), ["pr-1"])

        await coordinator.mutate(
            KEY, {"status": "sent"}, lambda: {"status": "sent"},
            policy=FAST, related=[("patients",), ("referrals",)],
        )

        assert cache.is_stale(("patients",))
        assert cache.is_stale(("referrals", "open"))
        assert not cache.is_stale(("providers",))
        assert not cache.is_stale(KEY)

    @pytest.mark.asyncio
    async def test_commit_after_retries(self, coordinator, cache, flaky):
        result = await coordinator.mutate(KEY, "optimistic", flaky(2, result="server"), policy=FAST)
        assert result == "server"
        assert cache.get(KEY) == "server"

    @pytest.mark.asyncio
    async def test_notifications(self, coordinator, notifier):
        await coordinator.mutate(KEY, 1, lambda: 2, policy=FAST)
        assert notifier.titles == ["Saving…", "Saved"]


# ── Rollback ─────────────────────────────────────────────────────────────


class TestRollback:
    @pytest.mark.asyncio
    async def test_restores_snapshot_and_raises(self, coordinator, cache, flaky):
        original = {"status": "pending", "notes": ["a"]}
        cache.set(KEY, original)
        cache.set(("patients",), ["p-1"])

        with pytest.raises(RuntimeError, match="Not found"):
            await coordinator.mutate(
                KEY, {"status": "sent"}, flaky(5, error=RuntimeError("Not found")),
                policy=FAST, related=[("patients",)],
            )

        assert cache.get(KEY) == {"status": "pending", "notes": ["a"]}
        assert not cache.is_stale(("patients",))
        assert coordinator.pending(KEY) is None

    @pytest.mark.asyncio
    async def test_snapshot_is_deep_copy(self, coordinator, cache, flaky):
        original = {"status": "pending", "notes": ["a"]}
        cache.set(KEY, original)

        async def op() -> None:
            original["notes"].append("edited in place")
            raise RuntimeError("Not found")

        with pytest.raises(RuntimeError):
            await coordinator.mutate(KEY, {"status": "sent"}, op, policy=FAST)

        assert cache.get(KEY) == {"status": "pending", "notes": ["a"]}

    @pytest.mark.asyncio
    async def test_absent_key_removed(self, coordinator, cache, flaky):
        with pytest.raises(RuntimeError):
            await coordinator.mutate(KEY, "optimistic", flaky(10), policy=FAST)
        assert not cache.contains(KEY)

    @pytest.mark.asyncio
    async def test_cached_none_restored(self, coordinator, cache, flaky):
        cache.set(KEY, None)
        with pytest.raises(RuntimeError):
            await coordinator.mutate(KEY, "optimistic", flaky(10), policy=FAST)
        assert cache.contains(KEY)
        assert cache.get(KEY) is None

    @pytest.mark.asyncio
    async def test_rollback_notification(self, coordinator, notifier, flaky):
        with pytest.raises(RuntimeError):
            await coordinator.mutate(KEY, "x", flaky(10), policy=FAST)

        last = notifier.notifications[-1]
        assert last.title == "Restored previous value"
        assert last.is_error
        assert last.metadata["attempts"] == 3

    @pytest.mark.asyncio
    async def test_cancellation_restores_snapshot(self, coordinator, cache):
        cache.set(KEY, "before")
        started = asyncio.Event()

        async def hangs() -> str:
            started.set()
            await asyncio.sleep(60)
            return "never"

        task = asyncio.create_task(coordinator.mutate(KEY, "optimistic", hangs, policy=FAST))
        await started.wait()
        assert cache.get(KEY) == "optimistic"

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cache.get(KEY) == "before"
        assert coordinator.pending(KEY) is None

    @pytest.mark.asyncio
    async def test_stale_entry_stays_stale(self, coordinator, cache, flaky):
        cache.set(KEY, "cached")
        cache.invalidate(KEY)

        with pytest.raises(RuntimeError):
            await coordinator.mutate(
                KEY, "optimistic", flaky(5, error=RuntimeError("Not found")), policy=FAST
            )

        assert cache.get(KEY) == "cached"
        assert cache.is_stale(KEY)

    @pytest.mark.asyncio
    async def test_fresh_entry_stays_fresh(self, coordinator, cache, flaky):
        cache.set(KEY, "cached")

        with pytest.raises(RuntimeError):
            await coordinator.mutate(
                KEY, "optimistic", flaky(5, error=RuntimeError("Not found")), policy=FAST
            )

        assert not cache.is_stale(KEY)


# ── Concurrency ──────────────────────────────────────────────────────────


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_same_key_conflict_rejected(self, coordinator, cache):
        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "first"

        first = asyncio.create_task(coordinator.mutate(KEY, "optimistic-1", slow, policy=FAST))
        await asyncio.sleep(0)

        with pytest.raises(MutationConflictError):
            await coordinator.mutate(KEY, "optimistic-2", lambda: "second", policy=FAST)
        assert cache.get(KEY) == "optimistic-1"

        release.set()
        assert await first == "first"
        assert cache.get(KEY) == "first"

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self, coordinator, cache):
        both_started = asyncio.Barrier(2)

        async def op(value: str) -> str:
            await both_started.wait()
            return value

        results = await asyncio.wait_for(
            asyncio.gather(
                coordinator.mutate(("task", "1"), "o1", lambda: op("s1"), policy=FAST),
                coordinator.mutate(("task", "2"), "o2", lambda: op("s2"), policy=FAST),
            ),
            timeout=2,
        )

        assert results == ["s1", "s2"]
        assert cache.get(("task", "1")) == "s1"
        assert cache.get(("task", "2")) == "s2"

    @pytest.mark.asyncio
    async def test_in_flight_read_cannot_overwrite(self, coordinator, cache):
        cache.set(KEY, "cached")

        async def loader() -> str:
            await asyncio.sleep(0.05)
            return "stale-server-read"

        read = asyncio.create_task(cache.fetch(KEY, loader))
        await asyncio.sleep(0)
        assert cache.is_pending(KEY)

        async def op() -> str:
            await asyncio.sleep(0.1)
            return "authoritative"

        result = await coordinator.mutate(KEY, "optimistic", op, policy=FAST)

        assert result == "authoritative"
        assert await read != "stale-server-read"
        assert cache.get(KEY) == "authoritative"

    @pytest.mark.asyncio
    async def test_read_started_during_mutation_keeps_optimistic_value(self, coordinator, cache):
        cache.set(KEY, "cached")
        op_started = asyncio.Event()
        release = asyncio.Event()
        loads = 0

        async def op() -> str:
            op_started.set()
            await release.wait()
            return "authoritative"

        async def loader() -> str:
            nonlocal loads
            loads += 1
            return "stale-server-read"

        mutation = asyncio.create_task(coordinator.mutate(KEY, "optimistic", op, policy=FAST))
        await op_started.wait()

        assert await cache.fetch(KEY, loader) == "optimistic"
        assert cache.get(KEY) == "optimistic"
        assert loads == 0

        release.set()
        assert await mutation == "authoritative"
        assert cache.get(KEY) == "authoritative"

    @pytest.mark.asyncio
    async def test_key_released_after_settling(self, coordinator, cache, flaky):
        async def loader() -> str:
            return "server"

        await coordinator.mutate(KEY, "optimistic", lambda: "saved", policy=FAST)
        assert not cache.is_held(KEY)

        with pytest.raises(RuntimeError):
            await coordinator.mutate(
                KEY, "optimistic", flaky(5, error=RuntimeError("Not found")), policy=FAST
            )
        assert not cache.is_held(KEY)

        cache.invalidate(KEY)
        assert await cache.fetch(KEY, loader) == "server"
        assert cache.get(KEY) == "server"

    @pytest.mark.asyncio
    async def test_operation_logs_carry_mutation_context(self, coordinator):
        seen: dict = {}

        async def op() -> str:
            seen.update(structlog.contextvars.get_contextvars())
            return "saved"

        await coordinator.mutate(KEY, "optimistic", op, policy=FAST, operation_name="send_referral")

        assert seen["operation"] == "send_referral"
        assert "mutation_id" in seen
        assert "operation" not in structlog.contextvars.get_contextvars()
