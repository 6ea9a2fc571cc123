"""Network monitor — connectivity state, link quality, and probes.

WHY
───
A transport-level "online" signal is not proof that the data store is
reachable.  The monitor only trusts a successful round-trip probe before
declaring the link back up, keeps probing while online to catch false
positives, and grades the link so that retry budgets can shrink on poor
connections.

ARCHITECTURE
────────────
::

    NetworkMonitor (one per process, injected into consumers)
      ├── handle_offline_signal()      ─ online → offline, immediately
      ├── handle_online_signal()       ─ probe, then offline → online
      ├── probe_once()                 ─ periodic tick (≈30 s)
      ├── check_connectivity()         ─ HEAD probe, hard 5 s bound
      ├── update_link_metrics(...)     ─ connection-change event
      ├── get_network_quality()        ─ good / fair / poor / offline
      ├── get_state()                  ─ NetworkState (consumes was_offline)
      └── wait_offline(timeout)        ─ suspension helper for retry waits

    On confirmed reconnect:
      cache.invalidate(None) → reconnect listeners → "Back Online"

Related modules:
    retry.py       — RetryOrchestrator reads quality and offline state
    core/cache.py  — QueryCache refreshed after reconnect

Example::

    monitor = NetworkMonitor(cache=cache, notifier=LoggingNotifier())
    async with monitor:                 # starts the periodic probe loop
        state = monitor.get_state()
        print(state.quality)            # NetworkQuality.FAIR
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx

from careline.core.cache import QueryCache
from careline.core.logging import get_logger
from careline.core.notifications import (
    Notification,
    NotificationVariant,
    Notifier,
    NullNotifier,
)
from careline.core.settings import ResilienceSettings, get_settings

logger = get_logger(__name__)

ProbeFn = Callable[[], Awaitable[bool]]
ReconnectListener = Callable[[], Any]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class NetworkQuality(str, Enum):
    """Coarse link quality used to scale retry aggressiveness."""

    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    OFFLINE = "offline"


_EFFECTIVE_TYPE_QUALITY = {
    "4g": NetworkQuality.GOOD,
    "3g": NetworkQuality.FAIR,
    "2g": NetworkQuality.POOR,
    "slow-2g": NetworkQuality.POOR,
}


@dataclass(frozen=True)
class LinkMetrics:
    """Connection metrics reported by the platform, all optional."""

    downlink_mbps: float | None = None
    round_trip_ms: float | None = None
    effective_type: str | None = None

    @property
    def is_slow(self) -> bool:
        if self.effective_type in ("2g", "slow-2g"):
            return True
        if self.downlink_mbps is not None and self.downlink_mbps < 1.5:
            return True
        return self.round_trip_ms is not None and self.round_trip_ms > 300


def assess_quality(is_online: bool, metrics: LinkMetrics | None) -> NetworkQuality:
    """Grade a link. Offline overrides every other signal."""
    if not is_online:
        return NetworkQuality.OFFLINE
    if metrics is None:
        return NetworkQuality.FAIR

    if metrics.effective_type:
        return _EFFECTIVE_TYPE_QUALITY.get(metrics.effective_type, NetworkQuality.FAIR)

    downlink, rtt = metrics.downlink_mbps, metrics.round_trip_ms
    if downlink is not None and rtt is not None:
        if downlink >= 5 and rtt <= 100:
            return NetworkQuality.GOOD
        if downlink >= 1.5 and rtt <= 300:
            return NetworkQuality.FAIR
        return NetworkQuality.POOR

    return NetworkQuality.POOR if metrics.is_slow else NetworkQuality.FAIR


@dataclass(frozen=True)
class NetworkState:
    """Point-in-time view of connectivity.

    Invariant: ``quality is NetworkQuality.OFFLINE`` iff ``is_online is False``.
    """

    is_online: bool
    was_offline: bool
    quality: NetworkQuality
    metrics: LinkMetrics | None = None
    offline_since: datetime | None = None
    failed_probes: int = 0
    last_successful_probe: datetime | None = None

    def offline_duration_s(self, now: datetime | None = None) -> float:
        """Seconds spent offline so far (0 while online)."""
        if self.is_online or self.offline_since is None:
            return 0.0
        return ((now or utcnow()) - self.offline_since).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / CLI output."""
        result: dict[str, Any] = {
            "is_online": self.is_online,
            "was_offline": self.was_offline,
            "quality": self.quality.value,
            "failed_probes": self.failed_probes,
        }
        if self.metrics is not None:
            result["downlink_mbps"] = self.metrics.downlink_mbps
            result["round_trip_ms"] = self.metrics.round_trip_ms
            result["effective_type"] = self.metrics.effective_type
        if self.offline_since is not None:
            result["offline_since"] = self.offline_since.isoformat()
        if self.last_successful_probe is not None:
            result["last_successful_probe"] = self.last_successful_probe.isoformat()
        return result


class NetworkMonitor:
    """Owns the process-wide network state.

    Parameters
    ----------
    settings : ResilienceSettings, optional
        Probe URL, timeout and interval. Defaults to :func:`get_settings`.
    probe : () -> Awaitable[bool], optional
        Replaces the HTTP HEAD probe.
    client : httpx.AsyncClient, optional
        Client used by the HTTP probe; a short-lived one is created otherwise.
    cache : QueryCache, optional
        Marked stale on confirmed reconnect.
    notifier : Notifier, optional
        Receives connection lost / restored messages.
    online : bool
        Initial connectivity (default True).
    """

    def __init__(
        self,
        settings: ResilienceSettings | None = None,
        *,
        probe: ProbeFn | None = None,
        client: httpx.AsyncClient | None = None,
        cache: QueryCache | None = None,
        notifier: Notifier | None = None,
        online: bool = True,
    ) -> None:
        self._settings = settings or get_settings()
        self._probe = probe
        self._client = client
        self._cache = cache
        self._notifier = notifier or NullNotifier()

        self._is_online = online
        self._was_offline = False
        self._metrics: LinkMetrics | None = None
        self._offline_since: datetime | None = None if online else utcnow()
        self._failed_probes = 0
        self._last_successful_probe: datetime | None = None

        self._offline_event = asyncio.Event()
        if not online:
            self._offline_event.set()

        self._listeners: list[ReconnectListener] = []
        self._task: asyncio.Task[None] | None = None

    # ── State ────────────────────────────────────────────────────────

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def quality(self) -> NetworkQuality:
        return self.get_network_quality()

    @property
    def metrics(self) -> LinkMetrics | None:
        return self._metrics

    def get_network_quality(self) -> NetworkQuality:
        return assess_quality(self._is_online, self._metrics)

    def get_state(self) -> NetworkState:
        """Return the current state.

        Each call is one observation cycle: ``was_offline`` is reported once
        after a confirmed reconnect, then cleared.
        """
        state = NetworkState(
            is_online=self._is_online,
            was_offline=self._was_offline,
            quality=self.get_network_quality(),
            metrics=self._metrics,
            offline_since=self._offline_since,
            failed_probes=self._failed_probes,
            last_successful_probe=self._last_successful_probe,
        )
        self._was_offline = False
        return state

    def should_attempt(self, requires_good_connection: bool = False) -> bool:
        """Whether an operation is worth starting under current conditions."""
        if not self._is_online:
            return False
        if requires_good_connection:
            return self.get_network_quality() in (NetworkQuality.GOOD, NetworkQuality.FAIR)
        return True

    def update_link_metrics(
        self,
        *,
        downlink_mbps: float | None = None,
        round_trip_ms: float | None = None,
        effective_type: str | None = None,
    ) -> NetworkQuality:
        """Record new connection metrics and return the resulting quality."""
        self._metrics = LinkMetrics(
            downlink_mbps=downlink_mbps,
            round_trip_ms=round_trip_ms,
            effective_type=effective_type,
        )
        quality = self.get_network_quality()
        logger.debug(
            "network.metrics_updated",
            downlink_mbps=downlink_mbps,
            round_trip_ms=round_trip_ms,
            effective_type=effective_type,
            quality=quality.value,
        )
        return quality

    # ── Probing ──────────────────────────────────────────────────────

    async def check_connectivity(self) -> bool:
        """Probe the data store once. Never raises; False on any failure."""
        timeout_s = self._settings.probe_timeout_s
        try:
            async with asyncio.timeout(timeout_s):
                ok = bool(await (self._probe() if self._probe else self._http_probe()))
        except TimeoutError:
            logger.warning("network.probe_timeout", timeout_s=timeout_s)
            ok = False
        except Exception as e:
            logger.warning("network.probe_failed", error=str(e), error_type=type(e).__name__)
            ok = False

        if ok:
            self._failed_probes = 0
            self._last_successful_probe = utcnow()
        else:
            self._failed_probes += 1
        return ok

    async def _http_probe(self) -> bool:
        url = self._settings.probe_url
        headers = {"Cache-Control": "no-cache"}
        if self._client is not None:
            response = await self._client.head(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._settings.probe_timeout_s) as client:
                response = await client.head(url, headers=headers)
        return response.is_success

    async def probe_once(self) -> bool:
        """One periodic tick: reconcile state with a fresh probe."""
        ok = await self.check_connectivity()
        if self._is_online and not ok:
            self._go_offline(reason="probe")
        elif not self._is_online and ok:
            await self._confirm_reconnect()
        return ok

    # ── Transitions ──────────────────────────────────────────────────

    def handle_offline_signal(self) -> None:
        """Platform reports connectivity loss."""
        if self._is_online:
            self._go_offline(reason="signal")

    async def handle_online_signal(self) -> bool:
        """Platform reports connectivity; confirm with a probe first."""
        logger.info("network.online_signal")
        ok = await self.check_connectivity()
        if ok and not self._is_online:
            await self._confirm_reconnect()
        elif not ok and self._is_online:
            self._go_offline(reason="probe")
        return ok

    def _go_offline(self, reason: str) -> None:
        self._is_online = False
        self._was_offline = False
        self._offline_since = utcnow()
        self._offline_event.set()
        logger.warning("network.offline", reason=reason, failed_probes=self._failed_probes)

        if reason == "probe":
            notification = Notification(
                title="Connection Issues",
                description="Network connectivity problems detected.",
                variant=NotificationVariant.DESTRUCTIVE,
            )
        else:
            notification = Notification(
                title="Connection Lost",
                description="Working offline. Data may not be up to date.",
                variant=NotificationVariant.DESTRUCTIVE,
            )
        self._notifier.notify(notification)

    async def _confirm_reconnect(self) -> None:
        offline_for = (
            (utcnow() - self._offline_since).total_seconds() if self._offline_since else 0.0
        )

        self._is_online = True
        self._was_offline = True
        self._offline_since = None
        self._offline_event.clear()
        logger.info(
            "network.reconnected",
            offline_for_s=round(offline_for, 3),
            quality=self.get_network_quality().value,
        )
        self._notifier.notify(
            Notification(title="Back Online", description="Connection restored. Refreshing data...")
        )
        await self.refresh_on_reconnect()

    # ── Reconnect refresh ────────────────────────────────────────────

    def add_reconnect_listener(self, listener: ReconnectListener) -> Callable[[], None]:
        """Register a callable (sync or async) run after each confirmed reconnect.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    async def refresh_on_reconnect(self) -> None:
        """Mark cached data stale and run reconnect listeners."""
        stale = self._cache.invalidate(None) if self._cache is not None else 0

        failures = 0
        for listener in list(self._listeners):
            try:
                result = listener()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                failures += 1
                logger.error("network.refresh_listener_failed", error=str(e))

        logger.info("network.refreshed", stale_entries=stale, listener_failures=failures)
        if failures:
            self._notifier.notify(
                Notification(
                    title="Refresh Failed",
                    description="Some data may not be up to date. Please refresh manually.",
                    variant=NotificationVariant.DESTRUCTIVE,
                )
            )
        else:
            self._notifier.notify(
                Notification(
                    title="Data Refreshed",
                    description="All data has been updated after reconnection.",
                )
            )

    # ── Suspension helper ────────────────────────────────────────────

    async def wait_offline(self, timeout_s: float) -> bool:
        """Suspend up to ``timeout_s``; True as soon as the link is offline."""
        if not self._is_online:
            return True
        try:
            async with asyncio.timeout(max(timeout_s, 0.0)):
                await self._offline_event.wait()
        except TimeoutError:
            return False
        return True

    # ── Periodic probe loop ──────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic probe loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop(), name="careline-network-monitor")
        logger.info("network.monitor_started", interval_s=self._settings.probe_interval_s)

    async def stop(self) -> None:
        """Stop the periodic probe loop."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("network.monitor_stopped")

    async def _run_loop(self) -> None:
        interval = self._settings.probe_interval_s
        while True:
            await asyncio.sleep(interval)
            await self.probe_once()

    async def __aenter__(self) -> NetworkMonitor:
        self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    def __repr__(self) -> str:
        return f"NetworkMonitor(online={self._is_online}, quality={self.get_network_quality().value})"


__all__ = [
    "NetworkQuality",
    "LinkMetrics",
    "NetworkState",
    "NetworkMonitor",
    "assess_quality",
]
