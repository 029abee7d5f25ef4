"""
CLI helpers: building an operation context and rendering results.

Commands call an ops function and hand the :class:`OperationResult` to
:func:`output_result` / :func:`output_paged`.  A failed result prints
``Error (CODE): message`` to stderr and exits with status 1.
"""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from relay.core.settings import RelaySettings
from relay.execution.runtime import Runtime
from relay.ops.context import OperationContext
from relay.ops.result import OperationResult, PagedResult

console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    "pending": "yellow",
    "running": "cyan",
    "success": "green",
    "completed": "green",
    "failed": "red",
    "cancelled": "magenta",
    "skipped": "dim",
}

# Long or nested values that make tables unreadable; shown by ``show`` and ``--json``.
HIDDEN_COLUMNS = frozenset({"parameters", "result", "details", "options", "tags", "parameter_schema", "spec_hash"})


def load_settings(database: str | None = None) -> RelaySettings:
    """Settings from the environment; ``--database`` wins over ``RELAY_DATABASE_URL``."""
    settings = RelaySettings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    return settings


def make_context(database: str | None = None, *, dry_run: bool = False) -> tuple[OperationContext, Any]:
    """Context and connection for one command.

    Batches run inline here: ``relay batches execute`` returns once every
    target has been submitted.
    """
    runtime = Runtime.from_settings(load_settings(database), background=False)
    conn = runtime.open_connection()
    return OperationContext(conn=conn, runtime=runtime, caller="cli", dry_run=dry_run), conn


def parse_json_option(value: str | None, name: str) -> dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        err_console.print(f"[red]Error: invalid JSON for {name}: {exc}[/red]")
        raise typer.Exit(1) from exc
    if not isinstance(parsed, dict):
        err_console.print(f"[red]Error: {name} must be a JSON object[/red]")
        raise typer.Exit(1)
    return parsed


def _plain(obj: Any) -> Any:
    if isinstance(obj, dict):
        return obj
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return obj


def _fail(result: OperationResult) -> None:
    error = result.error
    code = error.code if error else "INTERNAL"
    message = error.message if error else "operation failed"
    err_console.print(f"[bold red]Error[/bold red] ({code}): {escape(message)}")
    raise typer.Exit(code=1)


def _print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def _cell(column: str, value: Any) -> str:
    if value is None:
        return ""
    text = escape(str(value))
    style = STATUS_STYLES.get(text) if column.endswith("status") else None
    return f"[{style}]{text}[/{style}]" if style else text


def _print_table(items: list[Any], *, title: str = "") -> None:
    rows = [_plain(item) for item in items]
    columns = [
        key
        for key, value in rows[0].items()
        if key not in HIDDEN_COLUMNS and not isinstance(value, (dict, list))
    ]
    table = Table(title=title or None, pad_edge=False)
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(column, row.get(column)) for column in columns))
    console.print(table)


def _print_record(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        console.print(f"  [cyan]{key}[/cyan]: {_cell(key, value)}")


def output_result(result: OperationResult, *, as_json: bool = False, title: str = "") -> None:
    if not result.success:
        _fail(result)
    data = result.data
    if as_json:
        _print_json([_plain(d) for d in data] if isinstance(data, (list, tuple)) else _plain(data))
    elif isinstance(data, list):
        if data:
            _print_table(data, title=title)
        else:
            console.print("[dim]No items.[/dim]")
    else:
        _print_record(_plain(data), title=title)


def output_paged(result: PagedResult, *, as_json: bool = False, title: str = "") -> None:
    if not result.success:
        _fail(result)
    items = result.data or []
    if as_json:
        _print_json(
            {
                "items": [_plain(item) for item in items],
                "total": result.total,
                "limit": result.limit,
                "offset": result.offset,
                "has_more": result.has_more,
            }
        )
        return
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    _print_table(items, title=title)
    console.print(f"\n[dim]Showing {len(items)} of {result.total} (offset {result.offset})[/dim]")
