"""
CLI: ``recon conflicts`` — conflict adjudication records.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_conflicts(
    connector: str | None = typer.Option(None, "--connector", "-c"),
    operation_id: str | None = typer.Option(None, "--operation"),
    outcome: str | None = typer.Option(None, "--outcome", help="applied, superseded, merged, rejected"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List conflict records."""
    from reconspine.ops.conflicts import list_conflicts as _list
    from reconspine.ops.requests import ListConflictsRequest

    ctx, _ = make_context(database)
    request = ListConflictsRequest(
        connector_id=connector,
        operation_id=operation_id,
        outcome=outcome,
        limit=limit,
        offset=offset,
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Conflicts")


@app.command("show")
def show(
    conflict_id: str = typer.Argument(..., help="Conflict ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one conflict record with its snapshots."""
    from reconspine.ops.conflicts import get_conflict
    from reconspine.ops.requests import GetConflictRequest

    ctx, _ = make_context(database)
    result = get_conflict(ctx, GetConflictRequest(conflict_id=conflict_id))
    output_result(result, as_json=json_out, title=f"Conflict: {conflict_id}")
