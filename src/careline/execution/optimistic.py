"""Optimistic mutations — apply locally, confirm remotely, roll back on failure.

Manifesto:
    The UI shows the edited value immediately. The remote write runs under
    the retry orchestrator; when it finally fails, the cache holds exactly
    what it held before the mutation started.

    - **Atomic start:** cancel in-flight read → snapshot → optimistic set,
      with no suspension point in between
    - **Deep-copied snapshot:** later in-place edits of cached objects never
      leak into the rollback value
    - **One writer per key:** a second mutation on a pending key is rejected,
      and the key is held in the cache so reads cannot load over it
    - **Related keys:** invalidated (marked stale) only after a commit

Architecture:
    ::

        mutate(key, optimistic_value, op)
          │
          ├── cache.cancel_pending(key); cache.hold(key)
          ├── snapshot = deepcopy(cache.get(key))
          ├── cache.set(key, optimistic_value)
          │
          ├── RetryOrchestrator.execute(op, policy)
          │
          ├── ok     → cache.set(key, result); invalidate(related)   COMMITTED
          └── failed → restore snapshot (or remove key); raise error ROLLED_BACK
          │
          └── cache.release(key)

Examples:
    >>> coordinator = OptimisticMutationCoordinator(orchestrator, cache)
    >>> referral = await coordinator.mutate(
    ...     ("referral", rid),
    ...     {**current, "status": "sent"},
    ...     lambda: api.update_referral(rid, status="sent"),
    ...     related=[("patients",), ("referrals",)],
    ... )

Tags:
    optimistic-updates, rollback, cache, careline
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Hashable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from careline.core.cache import CacheKey, QueryCache, normalize_key
from careline.core.errors import MutationConflictError
from careline.core.logging import LogContext, get_logger
from careline.core.notifications import (
    Notification,
    NotificationVariant,
    Notifier,
    NullNotifier,
    describe_failure,
)
from careline.execution.retry import OnRetry, Operation, RetryOrchestrator, RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")


class MutationStatus(str, Enum):
    """Lifecycle of an optimistic mutation."""

    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolledback"


@dataclass
class OptimisticMutation(Generic[T]):
    """State of one in-flight optimistic mutation."""

    key: CacheKey
    optimistic_value: T
    snapshot: T | None
    had_snapshot: bool
    was_stale: bool = False
    status: MutationStatus = MutationStatus.PENDING
    mutation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_pending(self) -> bool:
        return self.status == MutationStatus.PENDING


class OptimisticMutationCoordinator:
    """Applies optimistic cache writes around retried remote mutations.

    Args:
        orchestrator: Runs the remote operation
        cache: Shared query cache
        notifier: Receives saving / saved / restored notifications
    """

    def __init__(
        self,
        orchestrator: RetryOrchestrator,
        cache: QueryCache,
        notifier: Notifier | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._cache = cache
        self._notifier = notifier or NullNotifier()
        self._pending: dict[CacheKey, OptimisticMutation[Any]] = {}

    def pending(self, key: Hashable) -> OptimisticMutation[Any] | None:
        """The mutation currently in flight for ``key``, if any."""
        return self._pending.get(normalize_key(key))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def mutate(
        self,
        key: Hashable,
        optimistic_value: Any,
        op: Operation,
        *,
        policy: RetryPolicy | None = None,
        related: Iterable[Hashable] = (),
        on_retry: OnRetry | None = None,
        operation_name: str | None = None,
    ) -> Any:
        """Apply ``optimistic_value`` to ``key`` and confirm it with ``op``.

        Returns:
            The authoritative value returned by ``op``, now cached under ``key``.

        Raises:
            MutationConflictError: a mutation on ``key`` is still pending.
            Exception: the operation's final error, after rollback.
        """
        k = normalize_key(key)
        if k in self._pending:
            raise MutationConflictError(k)

        # No await until the optimistic value is in place.
        self._cache.cancel_pending(k)
        self._cache.hold(k)
        had_snapshot = self._cache.contains(k)
        was_stale = had_snapshot and self._cache.is_stale(k)
        snapshot = copy.deepcopy(self._cache.get(k)) if had_snapshot else None
        self._cache.set(k, optimistic_value)

        mutation: OptimisticMutation[Any] = OptimisticMutation(
            key=k,
            optimistic_value=optimistic_value,
            snapshot=snapshot,
            had_snapshot=had_snapshot,
            was_stale=was_stale,
        )
        self._pending[k] = mutation
        name = operation_name or getattr(op, "__name__", "mutation")

        logger.info("mutation.started", key=k, operation=name, mutation_id=mutation.mutation_id)
        self._notifier.notify(Notification(title="Saving…", metadata={"operation": name}))

        try:
            with LogContext(operation=name, mutation_id=mutation.mutation_id):
                outcome = await self._orchestrator.execute(
                    op, policy, on_retry=on_retry, operation_name=name
                )
        except BaseException:
            self._rollback(mutation)
            logger.warning("mutation.cancelled", key=k, operation=name)
            raise
        finally:
            self._pending.pop(k, None)
            self._cache.release(k)

        if outcome.ok:
            self._commit(mutation, outcome.data, related)
            logger.info("mutation.committed", key=k, operation=name, attempts=outcome.attempts)
            self._notifier.notify(Notification(title="Saved", metadata={"operation": name}))
            return outcome.data

        self._rollback(mutation)
        logger.error(
            "mutation.rolled_back",
            key=k,
            operation=name,
            attempts=outcome.attempts,
            error=str(outcome.error),
        )
        failure = describe_failure(outcome.error, outcome.attempts)
        self._notifier.notify(
            Notification(
                title="Restored previous value",
                description=failure.description,
                variant=NotificationVariant.DESTRUCTIVE,
                metadata={"operation": name, **failure.metadata},
            )
        )
        raise outcome.error

    def _commit(
        self, mutation: OptimisticMutation[Any], value: Any, related: Iterable[Hashable]
    ) -> None:
        self._cache.set(mutation.key, value)
        for prefix in related:
            self._cache.invalidate(prefix)
        mutation.status = MutationStatus.COMMITTED
        mutation.snapshot = None

    def _rollback(self, mutation: OptimisticMutation[Any]) -> None:
        if mutation.had_snapshot:
            self._cache.set(mutation.key, mutation.snapshot)
            if mutation.was_stale:
                self._cache.invalidate(mutation.key)
        else:
            self._cache.remove(mutation.key)
        mutation.status = MutationStatus.ROLLED_BACK
        mutation.snapshot = None


__all__ = [
    "MutationStatus",
    "OptimisticMutation",
    "OptimisticMutationCoordinator",
]
