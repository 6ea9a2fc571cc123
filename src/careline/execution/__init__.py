"""Execution -- network monitoring, retries, optimistic mutations, batches.

Wiring::

    cache = InMemoryQueryCache()
    monitor = NetworkMonitor(cache=cache, notifier=notifier)
    orchestrator = RetryOrchestrator(monitor)
    coordinator = OptimisticMutationCoordinator(orchestrator, cache, notifier)
    batch = BatchExecutor(orchestrator, notifier)
"""

from careline.execution.batch import (
    BatchExecutor,
    BatchFailure,
    BatchStep,
    ConcurrentBatchResult,
    SequenceFailedError,
)
from careline.execution.network import (
    LinkMetrics,
    NetworkMonitor,
    NetworkQuality,
    NetworkState,
    assess_quality,
)
from careline.execution.optimistic import (
    MutationStatus,
    OptimisticMutation,
    OptimisticMutationCoordinator,
)
from careline.execution.progress import RetryProgress, RetryState
from careline.execution.retry import (
    RetryOrchestrator,
    RetryOutcome,
    RetryPolicy,
    compute_delay_ms,
)

__all__ = [
    # network
    "NetworkQuality",
    "LinkMetrics",
    "NetworkState",
    "NetworkMonitor",
    "assess_quality",
    # retry
    "RetryPolicy",
    "RetryOutcome",
    "RetryOrchestrator",
    "compute_delay_ms",
    # optimistic
    "MutationStatus",
    "OptimisticMutation",
    "OptimisticMutationCoordinator",
    # batch
    "BatchStep",
    "BatchFailure",
    "ConcurrentBatchResult",
    "SequenceFailedError",
    "BatchExecutor",
    # progress
    "RetryState",
    "RetryProgress",
]
