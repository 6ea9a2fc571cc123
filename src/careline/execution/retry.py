"""Retry orchestration with exponential backoff and network awareness.

Runs one remote operation under a :class:`RetryPolicy` and reports a single
:class:`RetryOutcome`. Operation errors never escape ``execute``; only
cancellation propagates.

Example:
    >>> from careline.execution.retry import RetryOrchestrator, RetryPolicy
    >>>
    >>> orchestrator = RetryOrchestrator(monitor)
    >>> outcome = await orchestrator.execute(save_note, RetryPolicy.api())
    >>> if not outcome.ok:
    ...     print(outcome.error, outcome.attempts)

Delays:
    retry N (N ≥ 1) waits ``base_delay_ms * 2**(N-1)`` with exponential
    backoff, ``base_delay_ms`` otherwise, capped at ``max_delay_ms``.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from careline.core.errors import (
    ErrorContext,
    NetworkError,
    categorize_error,
    is_non_retryable,
)
from careline.core.logging import get_logger
from careline.core.settings import ResilienceSettings, get_settings
from careline.execution.network import NetworkMonitor, NetworkQuality

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Any]
OnRetry = Callable[[int, Exception], None]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry one operation.

    Attributes:
        max_retries: Retries after the first attempt (0 = single attempt)
        base_delay_ms: Delay before the first retry
        exponential_backoff: Double the delay for every further retry
        network_aware: Abort when the monitor reports offline
        should_retry: Custom ``(error, attempt_index) -> bool`` gate; the
            retry budget and the non-retryable classification still apply
        max_delay_ms: Cap on any single delay
    """

    max_retries: int = 3
    base_delay_ms: int = 1000
    exponential_backoff: bool = True
    network_aware: bool = True
    should_retry: Callable[[Exception, int], bool] | None = None
    max_delay_ms: int = 30_000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms <= 0:
            raise ValueError(f"base_delay_ms must be > 0, got {self.base_delay_ms}")
        if self.max_delay_ms <= 0:
            raise ValueError(f"max_delay_ms must be > 0, got {self.max_delay_ms}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def for_quality(
        cls, quality: NetworkQuality, settings: ResilienceSettings | None = None
    ) -> RetryPolicy:
        """Network convention: fewer, slower retries on a poor link."""
        settings = settings or get_settings()
        if quality == NetworkQuality.POOR:
            max_retries, base_delay_ms = settings.poor_max_retries, settings.poor_base_delay_ms
        else:
            max_retries, base_delay_ms = (
                settings.default_max_retries,
                settings.default_base_delay_ms,
            )
        return cls(
            max_retries=max_retries,
            base_delay_ms=base_delay_ms,
            exponential_backoff=settings.exponential_backoff,
            network_aware=settings.network_aware,
            max_delay_ms=settings.max_delay_ms,
        )

    @classmethod
    def database(cls) -> RetryPolicy:
        """Preset for data-store calls."""
        return cls(max_retries=3, base_delay_ms=1000)

    @classmethod
    def api(cls) -> RetryPolicy:
        """Preset for edge-function / HTTP API calls."""
        return cls(max_retries=2, base_delay_ms=500)

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Single attempt."""
        return cls(max_retries=0)


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of one orchestrated operation.

    Exactly one of ``data`` / ``error`` is meaningful: ``error is None``
    means success, even when the operation returned ``None``.
    """

    data: T | None = None
    error: Exception | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None


def compute_delay_ms(policy: RetryPolicy, retry_number: int) -> int:
    """Delay before retry ``retry_number`` (1-based)."""
    if retry_number < 1:
        return 0
    if policy.exponential_backoff:
        delay = policy.base_delay_ms * (2 ** (retry_number - 1))
    else:
        delay = policy.base_delay_ms
    return min(delay, policy.max_delay_ms)


async def _invoke(op: Operation) -> Any:
    result = op()
    if inspect.isawaitable(result):
        return await result
    return result


class RetryOrchestrator:
    """Executes operations with retries, consulting the network monitor.

    Args:
        monitor: Source of quality and offline state. Without one, the
            link is assumed online and policies default to ``fair``.
        settings: Values for the network-derived default policy.
    """

    def __init__(
        self,
        monitor: NetworkMonitor | None = None,
        settings: ResilienceSettings | None = None,
    ) -> None:
        self._monitor = monitor
        self._settings = settings or get_settings()

    @property
    def monitor(self) -> NetworkMonitor | None:
        return self._monitor

    def policy_for_network(self) -> RetryPolicy:
        """Policy derived from the monitor's current quality."""
        quality = self._monitor.quality if self._monitor is not None else NetworkQuality.FAIR
        return RetryPolicy.for_quality(quality, self._settings)

    async def execute(
        self,
        op: Operation,
        policy: RetryPolicy | None = None,
        *,
        on_retry: OnRetry | None = None,
        operation_name: str | None = None,
    ) -> RetryOutcome[Any]:
        """Run ``op`` until it succeeds or the policy gives up.

        Args:
            op: Zero-argument callable; may return an awaitable
            policy: Explicit policy, used verbatim. ``None`` uses
                :meth:`policy_for_network`.
            on_retry: Called as ``on_retry(retry_number, error)`` before
                each wait
            operation_name: Name used in logs

        Returns:
            RetryOutcome with data on success, the final error otherwise
        """
        policy = policy or self.policy_for_network()
        name = operation_name or getattr(op, "__name__", "operation")
        attempts = 0

        while True:
            attempts += 1
            try:
                data = await _invoke(op)
            except Exception as e:
                error: Exception = e
            else:
                if attempts > 1:
                    logger.info("retry.recovered", operation=name, attempts=attempts)
                return RetryOutcome(data=data, error=None, attempts=attempts)

            if is_non_retryable(error):
                return self._give_up(name, error, attempts, reason="non_retryable")

            if self._is_offline(policy):
                return self._give_up(
                    name, self._offline_error(name, error, attempts), attempts, reason="offline"
                )

            attempt_index = attempts - 1
            if attempt_index >= policy.max_retries:
                return self._give_up(name, error, attempts, reason="exhausted")
            if policy.should_retry is not None and not policy.should_retry(error, attempt_index):
                return self._give_up(name, error, attempts, reason="declined")

            delay_ms = compute_delay_ms(policy, attempts)
            logger.warning(
                "retry.attempt_failed",
                operation=name,
                attempt=attempts,
                max_attempts=policy.max_attempts,
                delay_ms=delay_ms,
                error=str(error),
            )
            if on_retry is not None:
                on_retry(attempts, error)

            if await self._wait(policy, delay_ms):
                return self._give_up(
                    name, self._offline_error(name, error, attempts), attempts, reason="offline"
                )

    def _is_offline(self, policy: RetryPolicy) -> bool:
        return policy.network_aware and self._monitor is not None and not self._monitor.is_online

    async def _wait(self, policy: RetryPolicy, delay_ms: int) -> bool:
        """Sleep before a retry. True if the link went offline meanwhile."""
        delay_s = delay_ms / 1000
        if policy.network_aware and self._monitor is not None:
            return await self._monitor.wait_offline(delay_s)
        await asyncio.sleep(delay_s)
        return False

    @staticmethod
    def _offline_error(name: str, error: Exception, attempts: int) -> NetworkError:
        return NetworkError(
            "Network connection lost",
            cause=error,
            context=ErrorContext(operation=name, attempts=attempts),
        )

    @staticmethod
    def _give_up(name: str, error: Exception, attempts: int, *, reason: str) -> RetryOutcome[Any]:
        logger.error(
            "retry.gave_up",
            operation=name,
            attempts=attempts,
            reason=reason,
            category=categorize_error(error).value,
            error=str(error),
        )
        return RetryOutcome(data=None, error=error, attempts=attempts)


__all__ = [
    "RetryPolicy",
    "RetryOutcome",
    "RetryOrchestrator",
    "compute_delay_ms",
]
