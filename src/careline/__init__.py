"""
careline-core — client-side resilience for care-coordination dashboards.

Network-aware retries, optimistic cache updates with rollback, and batch
execution of remote operations against a hosted data store.

Architecture::

    core/
        errors.py          Error taxonomy + backend error classification
        logging.py         structlog configuration
        settings.py        ResilienceSettings (CARELINE_* environment)
        cache.py           QueryCache protocol + InMemoryQueryCache
        notifications.py   Notifier protocol + failure descriptions

    execution/
        network.py         NetworkMonitor (connectivity, quality, probes)
        retry.py           RetryPolicy / RetryOrchestrator
        optimistic.py      OptimisticMutationCoordinator
        batch.py           BatchExecutor (sequential / concurrent)
        progress.py        RetryProgress (retry state + notifications)

    cli/                   ``careline probe`` / ``careline config``
"""

__version__ = "0.1.0"
