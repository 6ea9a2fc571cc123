"""
CLI utility helpers — output formatting.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_dict(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render one object as JSON or as a two-column Rich table."""
    payload = _to_dict(data)

    if as_json:
        console.print_json(json.dumps(payload, default=str))
        return

    table = Table(title=title or None, show_header=False, pad_edge=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value", overflow="fold")
    for key, value in payload.items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)
