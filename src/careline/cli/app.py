"""
Root Typer application for the careline CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from careline.core.logging import configure_logging
from careline.core.settings import get_settings

app = Typer(
    name="careline",
    help="careline — network-aware retries and optimistic updates for care coordination.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from careline import __version__

        typer.echo(f"careline-core {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log output."),
) -> None:
    """careline CLI — probe connectivity and inspect resilience settings."""
    settings = get_settings()
    level = settings.log_level if verbose or settings.debug else "ERROR"
    configure_logging(level=level, json_format=settings.json_logs, cache_logger=False)


# ── Commands ─────────────────────────────────────────────────────────────

from careline.cli.config import show_config  # noqa: E402
from careline.cli.probe import probe  # noqa: E402

app.command("probe")(probe)
app.command("config")(show_config)


if __name__ == "__main__":
    app()
