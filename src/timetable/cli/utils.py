"""
CLI utility helpers — settings, store access and output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from timetable.core.errors import TimetableError
from timetable.core.logging import configure_logging
from timetable.core.settings import TimetableSettings
from timetable.core.store import Store

console = Console()
err_console = Console(stderr=True)


# ── Settings / store helpers ─────────────────────────────────────────────


def load_settings(**overrides: Any) -> TimetableSettings:
    """Build settings from the environment, with CLI options taking precedence."""
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = TimetableSettings(**values)
    except ValidationError as e:
        err_console.print(f"[bold red]Invalid configuration[/bold red]\n{e}")
        raise typer.Exit(code=2) from e
    configure_logging(settings.log_level, json_format=settings.json_logs)
    return settings


def open_store(settings: TimetableSettings) -> Store:
    """Connect to the configured store, creating missing tables."""
    store = Store.from_settings(settings)
    try:
        store.connect(create_schema=True)
    except TimetableError as e:
        fail(e)
    return store


def fail(error: TimetableError) -> None:
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def output_rows(rows: list[dict[str, Any]], *, as_json: bool = False, title: str = "") -> None:
    """Render a list of flat dicts as a rich table or JSON."""
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print(f"[dim]No {title.lower() or 'rows'} found.[/dim]")
        return

    table = Table(title=title or None, show_lines=False)
    for column in rows[0]:
        table.add_column(column.replace("_", " ").title())
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def output_dict(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    table = Table(title=title or None, show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, json.dumps(value, default=str) if isinstance(value, dict) else str(value))
    console.print(table)
