"""
CLI: ``recon dlq`` — dead-letter queue commands.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_dead_letters(
    connector: str | None = typer.Option(None, "--connector", "-c"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List dead-lettered operations (``--json`` includes attempt history)."""
    from reconspine.ops.dlq import list_dead_letter
    from reconspine.ops.requests import ListDeadLetterRequest

    ctx, _ = make_context(database)
    request = ListDeadLetterRequest(connector_id=connector, limit=limit, offset=offset)
    output_paged(list_dead_letter(ctx, request), as_json=json_out, title="Dead Letters")


@app.command("retry")
def retry(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    note: str | None = typer.Option(None, "--note"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start a new retry series for a dead-lettered operation."""
    from reconspine.ops.operations import retry_operation
    from reconspine.ops.requests import RetryOperationRequest

    ctx, _ = make_context(database)
    result = retry_operation(ctx, RetryOperationRequest(operation_id=operation_id, note=note))
    output_result(result, as_json=json_out, title="Retry")


@app.command("resolve")
def resolve(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    notes: str | None = typer.Option(None, "--notes"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Close a dead-lettered operation as handled out of band."""
    from reconspine.ops.operations import resolve_operation
    from reconspine.ops.requests import ResolveOperationRequest

    ctx, _ = make_context(database)
    result = resolve_operation(ctx, ResolveOperationRequest(operation_id=operation_id, notes=notes))
    output_result(result, as_json=json_out, title="Resolve")
