"""
Query cache abstraction shared by readers and optimistic writers.

The cache is the only shared mutable resource of the resilience layer.
Readers populate it through tracked fetches; the optimistic mutation
coordinator writes tentative values into it and must be able to cancel a
read that would otherwise overwrite them.

Manifesto:
    - **Protocol-based:** ``QueryCache`` defines the contract, the
      coordinator never depends on a concrete caching library
    - **Tuple keys:** ``("patient", "p-1")``; invalidation by key prefix
    - **Stale, not deleted:** invalidation marks entries for re-fetch and
      keeps the data readable
    - **Cancellable reads:** a cancelled fetch never writes
    - **Held keys:** while a writer holds a key, fetches serve the cached
      value and never load over it

Architecture:
    ::

        QueryCache (Protocol)
        └── InMemoryQueryCache  — single event loop, tracked fetch tasks

        API: get(key) → value | None
             set(key, value)
             remove(key)
             contains(key) → bool
             invalidate(key_or_prefix | None) → int
             is_stale(key) → bool
             cancel_pending(key) → bool
             hold(key) / release(key)

Examples:
    >>> cache = InMemoryQueryCache()
    >>> cache.set(("patient", "p-1"), {"name": "Ada"})
    >>> cache.invalidate(("patient",))
    1
    >>> cache.is_stale(("patient", "p-1"))
    True

Guardrails:
    ❌ DON'T: Await between cancel_pending, get and set when applying an
       optimistic value
    ✅ DO: Keep that sequence synchronous so no read interleaves

Tags:
    cache, query-cache, optimistic-updates, careline, protocol
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Protocol, runtime_checkable

from careline.core.logging import get_logger

logger = get_logger(__name__)

CacheKey = tuple[Hashable, ...]


def normalize_key(key: Hashable) -> CacheKey:
    """Turn ``"patients"`` into ``("patients",)``; tuples pass through."""
    return key if isinstance(key, tuple) else (key,)


def key_matches(key: CacheKey, prefix: CacheKey | None) -> bool:
    """True when ``key`` starts with ``prefix`` (``None`` matches all)."""
    if prefix is None:
        return True
    return key[: len(prefix)] == prefix


@runtime_checkable
class QueryCache(Protocol):
    """Protocol for the key-value cache consumed by the coordinator.

    Implementations:
        - :class:`InMemoryQueryCache` — single-process, event-loop bound
    """

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or ``None`` if absent."""
        ...

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value and clear its stale flag."""
        ...

    def remove(self, key: Hashable) -> None:
        """Drop a key. No-op if absent."""
        ...

    def contains(self, key: Hashable) -> bool:
        """True if the key holds a value."""
        ...

    def invalidate(self, key_or_prefix: Hashable | None = None) -> int:
        """Mark matching entries stale; return how many were marked."""
        ...

    def is_stale(self, key: Hashable) -> bool:
        """True if the entry was invalidated since it was last set."""
        ...

    def cancel_pending(self, key: Hashable) -> bool:
        """Cancel an in-flight fetch for exactly ``key``.

        Must not suspend. Returns True if a fetch was cancelled.
        """
        ...

    def hold(self, key: Hashable) -> None:
        """Reserve ``key`` for a writer; fetches must not overwrite it."""
        ...

    def release(self, key: Hashable) -> None:
        """End a :meth:`hold`. No-op if the key is not held."""
        ...


class InMemoryQueryCache:
    """In-memory query cache with tracked, cancellable fetches.

    Concurrent fetches of the same key share one task. Not thread-safe;
    correctness relies on the single event loop.

    Example:
        cache = InMemoryQueryCache()
        patient = await cache.fetch(("patient", pid), lambda: api.get_patient(pid))
    """

    def __init__(self) -> None:
        self._store: dict[CacheKey, Any] = {}
        self._stale: set[CacheKey] = set()
        self._updated_at: dict[CacheKey, float] = {}
        self._pending: dict[CacheKey, asyncio.Task[Any]] = {}
        self._held: set[CacheKey] = set()

    # ── Reads & writes ───────────────────────────────────────────────

    def get(self, key: Hashable) -> Any | None:
        return self._store.get(normalize_key(key))

    def set(self, key: Hashable, value: Any) -> None:
        k = normalize_key(key)
        self._store[k] = value
        self._stale.discard(k)
        self._updated_at[k] = time.monotonic()

    def remove(self, key: Hashable) -> None:
        k = normalize_key(key)
        self._store.pop(k, None)
        self._stale.discard(k)
        self._updated_at.pop(k, None)

    def contains(self, key: Hashable) -> bool:
        return normalize_key(key) in self._store

    def clear(self) -> None:
        """Remove all keys and cancel every in-flight fetch."""
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()
        self._held.clear()
        self._store.clear()
        self._stale.clear()
        self._updated_at.clear()

    def size(self) -> int:
        """Return current number of cached keys."""
        return len(self._store)

    def age_seconds(self, key: Hashable) -> float | None:
        """Seconds since the entry was last set, or None if absent."""
        updated = self._updated_at.get(normalize_key(key))
        if updated is None:
            return None
        return time.monotonic() - updated

    # ── Staleness ────────────────────────────────────────────────────

    def invalidate(self, key_or_prefix: Hashable | None = None) -> int:
        prefix = None if key_or_prefix is None else normalize_key(key_or_prefix)
        matched = [k for k in self._store if key_matches(k, prefix)]
        self._stale.update(matched)
        if matched:
            logger.debug("cache.invalidated", prefix=prefix, count=len(matched))
        return len(matched)

    def is_stale(self, key: Hashable) -> bool:
        return normalize_key(key) in self._stale

    def stale_keys(self) -> list[CacheKey]:
        """Keys currently marked for re-fetch."""
        return [k for k in self._store if k in self._stale]

    # ── Tracked fetches ──────────────────────────────────────────────

    def is_pending(self, key: Hashable) -> bool:
        """True while a fetch for ``key`` is in flight."""
        return normalize_key(key) in self._pending

    def cancel_pending(self, key: Hashable) -> bool:
        k = normalize_key(key)
        task = self._pending.pop(k, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("cache.fetch_cancelled", key=k)
        return True

    def hold(self, key: Hashable) -> None:
        self._held.add(normalize_key(key))

    def release(self, key: Hashable) -> None:
        self._held.discard(normalize_key(key))

    def is_held(self, key: Hashable) -> bool:
        """True while a writer holds ``key``."""
        return normalize_key(key) in self._held

    async def fetch(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Load ``key`` through ``loader`` and store the result.

        If the fetch is cancelled through :meth:`cancel_pending` (a writer
        took over the key), the caller receives whatever the cache holds at
        that moment instead of an error.

        While ``key`` is held by a writer the loader is not called and the
        held value is returned.
        """
        k = normalize_key(key)
        if k in self._held:
            logger.debug("cache.fetch_skipped_held", key=k)
            return self._store.get(k)

        task = self._pending.get(k)
        if task is None:
            task = asyncio.create_task(self._load(k, loader))
            self._pending[k] = task
            task.add_done_callback(lambda t, k=k: self._forget(k, t))

        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                return self._store.get(k)
            raise

    async def _load(self, key: CacheKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        value = await loader()
        if key in self._held:
            return self._store.get(key)
        self.set(key, value)
        return value

    def _forget(self, key: CacheKey, task: asyncio.Task[Any]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]


__all__ = [
    "CacheKey",
    "QueryCache",
    "InMemoryQueryCache",
    "normalize_key",
    "key_matches",
]
