"""
CLI: ``recon discrepancies`` — inspect and remediate detected drift.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer

from reconspine.cli.utils import err_console, make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_discrepancies(
    connector: str | None = typer.Option(None, "--connector", "-c"),
    run_id: str | None = typer.Option(None, "--run"),
    discrepancy_type: str | None = typer.Option(None, "--type", "-t"),
    status: str | None = typer.Option("pending", "--status", "-s", help="pending, resolved, ignored"),
    source_ref: str | None = typer.Option(None, "--source-ref"),
    target_ref: str | None = typer.Option(None, "--target-ref"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List discrepancies (pending ones by default)."""
    from reconspine.ops.discrepancies import list_discrepancies as _list
    from reconspine.ops.requests import ListDiscrepanciesRequest

    ctx, _ = make_context(database)
    request = ListDiscrepanciesRequest(
        connector_id=connector,
        run_id=run_id,
        discrepancy_type=discrepancy_type,
        resolution_status=status or None,
        source_ref=source_ref,
        target_ref=target_ref,
        limit=limit,
        offset=offset,
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Discrepancies")


@app.command("show")
def show(
    discrepancy_id: str = typer.Argument(..., help="Discrepancy ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a discrepancy with its active operation and action history."""
    from reconspine.ops.discrepancies import get_discrepancy
    from reconspine.ops.requests import GetDiscrepancyRequest

    ctx, _ = make_context(database)
    result = get_discrepancy(ctx, GetDiscrepancyRequest(discrepancy_id=discrepancy_id))
    output_result(result, as_json=json_out, title=f"Discrepancy: {discrepancy_id}")


@app.command("remediate")
def remediate(
    connector: str = typer.Argument(..., help="Connector ID owning the discrepancy"),
    discrepancy_id: str = typer.Argument(..., help="Discrepancy ID"),
    action: str = typer.Option(..., "--action", "-a", help="create, update, delete, link, unlink, inactivate_identity"),
    direction: str = typer.Option("source_to_target", "--direction", help="source_to_target or target_to_source"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview the operation without creating it"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create (or preview) the corrective operation for one discrepancy."""
    from reconspine.ops.discrepancies import remediate_discrepancy
    from reconspine.ops.requests import RemediateRequest

    ctx, _ = make_context(database, dry_run=dry_run)
    request = RemediateRequest(
        connector_id=connector, discrepancy_id=discrepancy_id, action=action, direction=direction
    )
    result = remediate_discrepancy(ctx, request)
    output_result(result, as_json=json_out, title="Remediation preview" if dry_run else "Remediation")


@app.command("bulk")
def bulk(
    connector: str = typer.Argument(..., help="Connector ID owning the discrepancies"),
    ids: list[str] | None = typer.Argument(None, help="Discrepancy IDs (all get --action/--direction)"),
    action: str | None = typer.Option(None, "--action", "-a"),
    direction: str = typer.Option("source_to_target", "--direction"),
    items_file: Path | None = typer.Option(
        None, "--file", "-f", help="JSON list of {discrepancy_id, action, direction}"
    ),
    dry_run: bool = typer.Option(False, "--dry-run"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Remediate many discrepancies; each item succeeds or fails on its own."""
    from reconspine.ops.discrepancies import bulk_remediate
    from reconspine.ops.requests import BulkRemediateRequest
    from reconspine.ops.result import OperationResult

    items: list[dict] = []
    if items_file is not None:
        items.extend(json.loads(items_file.read_text()))
    if ids:
        if not action:
            err_console.print("[bold red]Error[/bold red]: --action is required with discrepancy IDs")
            raise typer.Exit(code=1)
        items.extend({"discrepancy_id": i, "action": action, "direction": direction} for i in ids)

    ctx, _ = make_context(database, dry_run=dry_run)
    result = bulk_remediate(ctx, BulkRemediateRequest(connector_id=connector, items=items))
    if json_out or not result.success:
        output_result(result, as_json=json_out)
        return
    for warning in result.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {warning}")
    output_result(
        OperationResult.ok(result.data.items),
        title="Bulk preview" if dry_run else "Bulk remediation",
    )
    counts = result.data.counts
    typer.echo(
        f"total={counts['total']} created={counts['created']} "
        f"previewed={counts['previewed']} failed={counts['failed']}"
    )


@app.command("ignore")
def ignore(
    connector: str = typer.Argument(..., help="Connector ID owning the discrepancy"),
    discrepancy_id: str = typer.Argument(..., help="Discrepancy ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Dismiss a pending discrepancy without remediation."""
    from reconspine.ops.discrepancies import ignore_discrepancy
    from reconspine.ops.requests import IgnoreDiscrepancyRequest

    ctx, _ = make_context(database)
    request = IgnoreDiscrepancyRequest(connector_id=connector, discrepancy_id=discrepancy_id)
    result = ignore_discrepancy(ctx, request)
    output_result(result, as_json=json_out, title="Ignored")


@app.command("trend")
def trend(
    connector: str = typer.Argument(..., help="Connector ID"),
    days: int = typer.Option(30, "--days"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Daily detection counts per discrepancy type."""
    from reconspine.ops.discrepancies import discrepancy_trend
    from reconspine.ops.requests import DiscrepancyTrendRequest

    ctx, _ = make_context(database)
    result = discrepancy_trend(ctx, DiscrepancyTrendRequest(connector_id=connector, days=days))
    output_result(result, as_json=json_out, title=f"Trend: {connector}")
