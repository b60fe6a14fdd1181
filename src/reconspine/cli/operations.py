"""
CLI: ``recon ops`` — corrective operation commands.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_operations(
    connector: str | None = typer.Option(None, "--connector", "-c"),
    status: str | None = typer.Option(None, "--status", "-s"),
    operation_type: str | None = typer.Option(None, "--type", "-t"),
    discrepancy_id: str | None = typer.Option(None, "--discrepancy"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List operations, newest first."""
    from reconspine.ops.operations import list_operations as _list
    from reconspine.ops.requests import ListOperationsRequest

    ctx, _ = make_context(database)
    request = ListOperationsRequest(
        connector_id=connector,
        status=status,
        operation_type=operation_type,
        discrepancy_id=discrepancy_id,
        limit=limit,
        offset=offset,
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Operations")


@app.command("show")
def show(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show an operation with attempts, log and conflict record."""
    from reconspine.ops.operations import get_operation
    from reconspine.ops.requests import GetOperationRequest

    ctx, _ = make_context(database)
    result = get_operation(ctx, GetOperationRequest(operation_id=operation_id))
    output_result(result, as_json=json_out, title=f"Operation: {operation_id}")


@app.command("attempts")
def attempts(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Attempt history of one operation."""
    from reconspine.ops.operations import list_operation_attempts
    from reconspine.ops.requests import ListOperationAttemptsRequest

    ctx, _ = make_context(database)
    result = list_operation_attempts(ctx, ListOperationAttemptsRequest(operation_id=operation_id))
    output_paged(result, as_json=json_out, title="Attempts")


@app.command("logs")
def logs(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Operation log: every status transition and notable event."""
    from reconspine.ops.operations import list_operation_logs
    from reconspine.ops.requests import ListOperationLogsRequest

    ctx, _ = make_context(database)
    result = list_operation_logs(ctx, ListOperationLogsRequest(operation_id=operation_id))
    output_paged(result, as_json=json_out, title="Operation log")


@app.command("retry")
def retry(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    note: str | None = typer.Option(None, "--note"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Requeue a failed or dead-lettered operation."""
    from reconspine.ops.operations import retry_operation
    from reconspine.ops.requests import RetryOperationRequest

    ctx, _ = make_context(database, dry_run=dry_run)
    result = retry_operation(ctx, RetryOperationRequest(operation_id=operation_id, note=note))
    output_result(result, as_json=json_out, title="Retry")


@app.command("cancel")
def cancel(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    reason: str | None = typer.Option(None, "--reason"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel a pending, in-progress or awaiting operation."""
    from reconspine.ops.operations import cancel_operation
    from reconspine.ops.requests import CancelOperationRequest

    ctx, _ = make_context(database, dry_run=dry_run)
    result = cancel_operation(ctx, CancelOperationRequest(operation_id=operation_id, reason=reason))
    output_result(result, as_json=json_out, title="Cancel")


@app.command("resolve")
def resolve(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    notes: str | None = typer.Option(None, "--notes"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Close a dead-lettered operation as handled out of band."""
    from reconspine.ops.operations import resolve_operation
    from reconspine.ops.requests import ResolveOperationRequest

    ctx, _ = make_context(database, dry_run=dry_run)
    result = resolve_operation(ctx, ResolveOperationRequest(operation_id=operation_id, notes=notes))
    output_result(result, as_json=json_out, title="Resolve")


@app.command("confirm")
def confirm(
    operation_id: str = typer.Argument(..., help="Operation ID"),
    failed: bool = typer.Option(False, "--failed", help="The target reported failure"),
    detail: str | None = typer.Option(None, "--detail"),
    external_ref: str | None = typer.Option(None, "--external-ref"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Record the target's confirmation of an awaiting operation."""
    from reconspine.ops.operations import confirm_operation
    from reconspine.ops.requests import ConfirmOperationRequest

    ctx, _ = make_context(database)
    request = ConfirmOperationRequest(
        operation_id=operation_id,
        succeeded=not failed,
        detail=detail,
        external_ref=external_ref,
    )
    output_result(confirm_operation(ctx, request), as_json=json_out, title="Confirm")


@app.command("stats")
def stats(
    connector: str | None = typer.Option(None, "--connector", "-c"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Queue statistics per connector."""
    from reconspine.ops.operations import operation_stats
    from reconspine.ops.requests import OperationStatsRequest

    ctx, _ = make_context(database)
    result = operation_stats(ctx, OperationStatsRequest(connector_id=connector))
    output_result(result, as_json=json_out, title="Operation stats")
