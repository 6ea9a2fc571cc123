"""
CLI: ``careline probe`` — one connectivity check against the probe URL.
"""

from __future__ import annotations

import asyncio

import typer

from careline.cli.utils import console, output_dict
from careline.core.settings import get_settings
from careline.execution.network import NetworkMonitor, NetworkState


async def _probe(monitor: NetworkMonitor) -> NetworkState:
    await monitor.probe_once()
    return monitor.get_state()


def probe(
    url: str | None = typer.Option(None, "--url", "-u", help="Probe URL (default: CARELINE_PROBE_URL)"),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Probe timeout in seconds"),
    downlink: float | None = typer.Option(None, "--downlink", help="Known downlink in Mbps"),
    rtt: float | None = typer.Option(None, "--rtt", help="Known round-trip time in ms"),
    effective_type: str | None = typer.Option(None, "--effective-type", help="4g, 3g, 2g or slow-2g"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Probe connectivity once and print the resulting network state."""
    update: dict[str, object] = {}
    if url is not None:
        update["probe_url"] = url
    if timeout is not None:
        update["probe_timeout_s"] = timeout
    settings = get_settings().model_copy(update=update)

    monitor = NetworkMonitor(settings)
    if downlink is not None or rtt is not None or effective_type is not None:
        monitor.update_link_metrics(
            downlink_mbps=downlink, round_trip_ms=rtt, effective_type=effective_type
        )

    state = asyncio.run(_probe(monitor))

    if json_out:
        output_dict(state, as_json=True)
    else:
        colour = "green" if state.is_online else "red"
        console.print(f"[bold]{settings.probe_url}[/bold] → [{colour}]{state.quality.value}[/{colour}]")
        output_dict(state, title="Network State")

    if not state.is_online:
        raise typer.Exit(code=1)
