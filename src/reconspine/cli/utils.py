"""
CLI utility helpers — output formatting and context management.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from reconspine.core.connection import create_connection
from reconspine.core.errors import ConfigError
from reconspine.core.settings import get_settings
from reconspine.execution.connectors import ConnectorRegistry, load_registry
from reconspine.ops.context import OperationContext
from reconspine.ops.result import OperationResult, PagedResult

console = Console()
err_console = Console(stderr=True)

# Columns shown in list tables; everything else is available with --json.
_LIST_COLUMNS: dict[str, tuple[str, ...]] = {
    "Discrepancies": (
        "id", "connector_id", "discrepancy_type", "source_ref", "target_ref",
        "resolution_status", "active_operation_id", "detected_at",
    ),
    "Operations": (
        "id", "connector_id", "operation_type", "direction", "status",
        "retry_count", "next_retry_at", "last_error",
    ),
    "Dead Letters": ("id", "connector_id", "operation_type", "retry_count", "last_error", "updated_at"),
    "Runs": ("id", "connector_id", "mode", "status", "dry_run", "trigger", "started_at", "completed_at"),
    "Schedules": (
        "connector_id", "mode", "frequency", "cron_expression", "enabled",
        "next_run_at", "last_run_at",
    ),
}


# ── Context helpers ──────────────────────────────────────────────────────


def load_connectors(factory: str | None = None) -> ConnectorRegistry:
    """Build the connector registry from ``--connectors`` or ``RECON_CONNECTOR_FACTORY``."""
    path = factory or get_settings().connector_factory
    if not path:
        raise ConfigError(
            "No connector factory configured. Pass --connectors module:callable "
            "or set RECON_CONNECTOR_FACTORY"
        )
    return load_registry(path)


def make_context(
    database: str | None = None,
    *,
    dry_run: bool = False,
    connectors: ConnectorRegistry | None = None,
) -> tuple[OperationContext, Any]:
    """Create an ``OperationContext`` + connection pair for CLI commands."""
    settings = get_settings()
    conn = create_connection(database or settings.database_url, init_schema=True)
    ctx = OperationContext(
        conn=conn,
        connectors=connectors or ConnectorRegistry(),
        settings=settings,
        caller="cli",
        dry_run=dry_run,
    )
    return ctx, conn


def connectors_or_exit(factory: str | None) -> ConnectorRegistry:
    try:
        return load_connectors(factory)
    except ConfigError as exc:
        err_console.print(f"[bold red]Error[/bold red] (CONFIG_ERROR): {exc.message}")
        raise typer.Exit(code=1) from exc


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a domain model / dataclass / dict to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _fail(result: OperationResult) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    code = err.code if err else "ERROR"
    err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}")
    raise typer.Exit(code=1)


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        _fail(result)

    data = result.data

    if as_json:
        payload = _to_dict(data) if not isinstance(data, list | tuple) else [_to_dict(d) for d in data]
        typer.echo(json.dumps(payload, indent=2, default=str))
        return

    for warning in result.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {warning}")

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)


def output_paged(
    result: PagedResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render a ``PagedResult`` to the terminal with pagination info."""
    if not result.success:
        _fail(result)

    items = result.data or []

    if as_json:
        payload = {
            "items": [_to_dict(d) for d in items],
            "total": result.total,
            "limit": result.limit,
            "offset": result.offset,
            "has_more": result.has_more,
        }
        typer.echo(json.dumps(payload, indent=2, default=str))
        return

    if not items:
        console.print("[dim]No items.[/dim]")
        return

    _print_table(items, title=title)
    console.print(
        f"\n[dim]Showing {len(items)} of {result.total}"
        f" (offset {result.offset})[/dim]"
    )


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of models/dicts as a Rich table."""
    rows = [_to_dict(item) for item in items]
    columns = _LIST_COLUMNS.get(title) or tuple(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in columns))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)
