"""
CLI: ``careline config`` — show effective resilience settings.
"""

from __future__ import annotations

import typer

from careline.cli.utils import console, output_dict
from careline.core.settings import get_settings


def show_config(
    json_out: bool = typer.Option(False, "--json"),
    env: bool = typer.Option(False, "--env", help="Print as CARELINE_* environment lines"),
) -> None:
    """Show current configuration."""
    settings = get_settings()

    if json_out:
        console.print_json(settings.model_dump_json())
        return

    if env:
        for key, value in sorted(settings.model_dump().items()):
            console.print(f"CARELINE_{key.upper()}={'' if value is None else value}")
        return

    output_dict(settings, title="Resilience Settings")
