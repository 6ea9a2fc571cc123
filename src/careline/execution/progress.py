"""Retry progress tracking with user-facing notifications."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from careline.core.logging import get_logger
from careline.core.notifications import (
    Notification,
    NotificationVariant,
    Notifier,
    NullNotifier,
    plural,
)
from careline.execution.retry import Operation, RetryOrchestrator, RetryOutcome, RetryPolicy

logger = get_logger(__name__)


@dataclass
class RetryState:
    """Progress of the tracked operation.

    Attributes:
        current_attempt: Retry number in progress (0 = first attempt)
        total_attempts: Attempts made so far
        is_retrying: An operation is running
        last_error: Most recent error
        is_success: Finished successfully
        is_complete: Finished (success or final failure)
    """

    current_attempt: int = 0
    total_attempts: int = 0
    is_retrying: bool = False
    last_error: Exception | None = None
    is_success: bool = False
    is_complete: bool = False


class RetryProgress:
    """Runs one operation at a time and mirrors its retries into a RetryState.

    Example:
        progress = RetryProgress(orchestrator, notifier)
        outcome = await progress.run(sync_tasks, operation_name="Task sync")
        progress.state.total_attempts
    """

    def __init__(self, orchestrator: RetryOrchestrator, notifier: Notifier | None = None) -> None:
        self._orchestrator = orchestrator
        self._notifier = notifier or NullNotifier()
        self.state = RetryState()

    def reset(self) -> None:
        self.state = RetryState()

    async def run(
        self,
        op: Operation,
        policy: RetryPolicy | None = None,
        *,
        operation_name: str = "operation",
        show_progress: bool = True,
        on_success: Callable[[Any, int], None] | None = None,
        on_error: Callable[[Exception, int], None] | None = None,
    ) -> RetryOutcome[Any]:
        """Execute ``op`` through the orchestrator, tracking its progress."""
        policy = policy or self._orchestrator.policy_for_network()
        self.state = RetryState(is_retrying=True)

        def _on_retry(retry_number: int, error: Exception) -> None:
            self.state.current_attempt = retry_number
            self.state.total_attempts = retry_number
            self.state.last_error = error
            if show_progress:
                self._notifier.notify(
                    Notification(
                        title=f"Retrying {operation_name}...",
                        description=f"Attempt {retry_number + 1} of {policy.max_attempts}",
                    )
                )

        outcome = await self._orchestrator.execute(
            op, policy, on_retry=_on_retry, operation_name=operation_name
        )

        self.state.is_retrying = False
        self.state.is_complete = True
        self.state.total_attempts = outcome.attempts

        if not outcome.ok:
            self.state.last_error = outcome.error
            if on_error is not None:
                on_error(outcome.error, outcome.attempts)
            if show_progress:
                self._notifier.notify(
                    Notification(
                        title=f"{operation_name} Failed",
                        description=f"Failed after {plural(outcome.attempts, 'attempt')}.",
                        variant=NotificationVariant.DESTRUCTIVE,
                    )
                )
            return outcome

        self.state.is_success = True
        if on_success is not None:
            on_success(outcome.data, outcome.attempts)
        if show_progress and outcome.attempts > 1:
            self._notifier.notify(
                Notification(
                    title=f"{operation_name} Successful",
                    description=f"Completed after {plural(outcome.attempts, 'attempt')}.",
                )
            )
        logger.debug("progress.complete", operation=operation_name, attempts=outcome.attempts)
        return outcome


__all__ = ["RetryState", "RetryProgress"]
