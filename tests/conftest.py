"""
Shared pytest fixtures and configuration for careline-core tests.

This module provides:
- Fast settings (millisecond retry delays, short probe intervals)
- Cache, notifier, monitor and orchestrator fixtures wired together
- A ``Flaky`` operation helper that fails a fixed number of times
- Logging reset between tests for isolation

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    @pytest.mark.asyncio
    async def test_something(orchestrator, notifier):
        ...
"""

import sys
from pathlib import Path

import pytest
import structlog

# Ensure careline package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from careline.core.cache import InMemoryQueryCache
from careline.core.notifications import CollectingNotifier
from careline.core.settings import ResilienceSettings, get_settings
from careline.execution.network import NetworkMonitor
from careline.execution.retry import RetryOrchestrator


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_global_state():
    """Clear cached settings and structlog configuration around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    structlog.reset_defaults()


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def settings() -> ResilienceSettings:
    """Settings with millisecond delays so retry tests stay fast."""
    return ResilienceSettings(
        probe_url="http://careline.test/favicon.ico",
        probe_timeout_s=0.5,
        probe_interval_s=0.01,
        default_max_retries=3,
        default_base_delay_ms=1,
        poor_max_retries=1,
        poor_base_delay_ms=2,
    )


@pytest.fixture
def cache() -> InMemoryQueryCache:
    return InMemoryQueryCache()


@pytest.fixture
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture
def probe_results() -> list[bool]:
    """Results returned by the monitor's probe, consumed front to back.

    The last value repeats once the list is down to one element.
    """
    return [True]


@pytest.fixture
def monitor(settings, cache, notifier, probe_results) -> NetworkMonitor:
    async def _probe() -> bool:
        if len(probe_results) > 1:
            return probe_results.pop(0)
        return probe_results[0]

    return NetworkMonitor(settings, probe=_probe, cache=cache, notifier=notifier)


@pytest.fixture
def orchestrator(monitor, settings) -> RetryOrchestrator:
    return RetryOrchestrator(monitor, settings)


# =============================================================================
# Operation Helpers
# =============================================================================


class Flaky:
    """Async operation that raises ``error`` for the first ``failures`` calls."""

    def __init__(self, failures: int, result: object = "ok", error: Exception | None = None):
        self.failures = failures
        self.result = result
        self.error = error or RuntimeError("temporary glitch")
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.fixture
def flaky():
    """Factory fixture: ``flaky(2, result="done")``."""
    return Flaky
