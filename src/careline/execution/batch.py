"""Batch executor — ordered sequences and concurrent fan-out of retried steps.

WHY
───
Dashboard actions often touch several records at once: a referral plus its
notes, a list of task status changes.  Some must happen in order and stop at
the first failure; others are independent and should all be attempted, with
failures summarised instead of raised.

ARCHITECTURE
────────────
::

    BatchExecutor(orchestrator)
      ├── .run_sequential(steps)  ─ in order, stop at first failure
      │                              → list of results | SequenceFailedError
      └── .run_concurrent(steps)  ─ asyncio.gather (+ optional semaphore)
                                     → ConcurrentBatchResult

    Every step runs through RetryOrchestrator.execute with its own policy.

Related modules:
    retry.py       — RetryOrchestrator / RetryPolicy

Example::

    batch = BatchExecutor(orchestrator, notifier=notifier)
    result = await batch.run_concurrent([
        BatchStep("close_task_1", lambda: api.close_task("t-1")),
        BatchStep("close_task_2", lambda: api.close_task("t-2")),
    ])
    print(result.succeeded, result.failed)  # 2 0
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from careline.core.errors import CarelineError, ErrorContext, categorize_error
from careline.core.logging import get_logger
from careline.core.notifications import (
    Notification,
    NotificationVariant,
    Notifier,
    NullNotifier,
)
from careline.execution.retry import Operation, RetryOrchestrator, RetryOutcome, RetryPolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class BatchStep:
    """One named operation in a batch."""

    name: str
    op: Operation
    policy: RetryPolicy | None = None


@dataclass(frozen=True)
class BatchFailure:
    """A step of a concurrent batch that did not succeed."""

    index: int
    name: str
    error: BaseException
    attempts: int


@dataclass
class ConcurrentBatchResult:
    """Aggregate result of a concurrent batch.

    ``results`` holds successful results only; failures are listed
    separately and never raised.
    """

    batch_id: str
    total: int
    results: list[Any] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def all_succeeded(self) -> bool:
        return not self.failures

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / CLI output."""
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_seconds": self.duration_seconds,
            "failures": [
                {
                    "index": f.index,
                    "name": f.name,
                    "error": str(f.error),
                    "attempts": f.attempts,
                }
                for f in self.failures
            ],
        }


class SequenceFailedError(CarelineError):
    """A sequential batch stopped at a failing step.

    Attributes:
        step: 1-based index of the failing step
        step_name: Name of the failing step
        error: The step's final error
        attempts: Attempts spent on the failing step
        completed_steps: Steps that succeeded before it
    """

    def __init__(
        self,
        step: int,
        step_name: str,
        error: Exception,
        attempts: int,
        completed_steps: int,
    ):
        super().__init__(
            f"Sequence failed at step {step}: {step_name}",
            category=categorize_error(error),
            retryable=False,
            context=ErrorContext(step=step_name, attempts=attempts),
            cause=error,
        )
        self.step = step
        self.step_name = step_name
        self.error = error
        self.attempts = attempts
        self.completed_steps = completed_steps


class BatchExecutor:
    """Runs groups of steps through a shared :class:`RetryOrchestrator`.

    Parameters
    ----------
    orchestrator : RetryOrchestrator
        Executes every step with its own policy.
    notifier : Notifier, optional
        Receives the partial-failure summary of concurrent batches.
    max_concurrency : int, optional
        Bound on simultaneously running steps; unbounded when None.
    """

    def __init__(
        self,
        orchestrator: RetryOrchestrator,
        notifier: Notifier | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self._orchestrator = orchestrator
        self._notifier = notifier or NullNotifier()
        self._max_concurrency = max_concurrency

    async def run_sequential(self, steps: Iterable[BatchStep]) -> list[Any]:
        """Run steps in order; the first failure stops the sequence.

        Returns:
            Results of every step, in order.

        Raises:
            SequenceFailedError: citing the 1-based index and name of the
                failing step. Later steps are not run.
        """
        results: list[Any] = []
        for index, step in enumerate(steps, start=1):
            outcome = await self._orchestrator.execute(
                step.op, step.policy, operation_name=step.name
            )
            if not outcome.ok:
                logger.error(
                    "batch.sequence_failed",
                    step=index,
                    step_name=step.name,
                    attempts=outcome.attempts,
                    completed_steps=len(results),
                    error=str(outcome.error),
                )
                raise SequenceFailedError(
                    step=index,
                    step_name=step.name,
                    error=outcome.error,
                    attempts=outcome.attempts,
                    completed_steps=len(results),
                )
            results.append(outcome.data)

        logger.info("batch.sequence_complete", steps=len(results))
        return results

    async def run_concurrent(self, steps: Sequence[BatchStep]) -> ConcurrentBatchResult:
        """Launch every step at once and summarise the outcomes.

        A failing or slow step never cancels the others.
        """
        batch_id = str(uuid.uuid4())
        result = ConcurrentBatchResult(batch_id=batch_id, total=len(steps))
        sem = (
            asyncio.Semaphore(self._max_concurrency)
            if self._max_concurrency is not None
            else contextlib.nullcontext()
        )

        logger.info(
            "batch.concurrent_start",
            batch_id=batch_id,
            steps=len(steps),
            max_concurrency=self._max_concurrency,
        )

        async def _run_one(step: BatchStep) -> RetryOutcome[Any]:
            async with sem:
                return await self._orchestrator.execute(
                    step.op, step.policy, operation_name=step.name
                )

        outcomes = await asyncio.gather(
            *[_run_one(step) for step in steps],
            return_exceptions=True,
        )

        for index, (step, outcome) in enumerate(zip(steps, outcomes, strict=True)):
            if isinstance(outcome, BaseException):
                failure = BatchFailure(index=index, name=step.name, error=outcome, attempts=1)
            elif not outcome.ok:
                failure = BatchFailure(
                    index=index, name=step.name, error=outcome.error, attempts=outcome.attempts
                )
            else:
                result.results.append(outcome.data)
                continue
            result.failures.append(failure)
            logger.warning(
                "batch.step_failed",
                batch_id=batch_id,
                index=index,
                name=step.name,
                attempts=failure.attempts,
                error=str(failure.error),
            )

        result.completed_at = datetime.now(UTC)
        logger.info(
            "batch.concurrent_complete",
            batch_id=batch_id,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_seconds=result.duration_seconds,
        )

        if result.failed:
            self._notifier.notify(
                Notification(
                    title="Some Operations Failed",
                    description=f"{result.failed} of {result.total} operations failed.",
                    variant=NotificationVariant.DESTRUCTIVE,
                    metadata={"batch_id": batch_id},
                )
            )
        return result

    @property
    def max_concurrency(self) -> int | None:
        return self._max_concurrency


__all__ = [
    "BatchStep",
    "BatchFailure",
    "ConcurrentBatchResult",
    "SequenceFailedError",
    "BatchExecutor",
]
