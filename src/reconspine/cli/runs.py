"""
CLI: ``recon runs`` — trigger, inspect, cancel and resume reconciliation runs.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import connectors_or_exit, make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("trigger")
def trigger(
    connector_id: str = typer.Argument(..., help="Connector to reconcile"),
    mode: str = typer.Option("full", "--mode", "-m", help="full or delta"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report drift without persisting discrepancies"),
    connectors: str | None = typer.Option(
        None, "--connectors", help="module:callable returning a ConnectorRegistry"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one reconciliation pass now.

    Example::

        recon runs trigger hr-directory --mode delta \\
            --connectors myapp.recon:build_registry
    """
    from reconspine.ops.requests import TriggerRunRequest
    from reconspine.ops.runs import trigger_run

    registry = connectors_or_exit(connectors)
    ctx, _ = make_context(database, dry_run=dry_run, connectors=registry)
    result = trigger_run(ctx, TriggerRunRequest(connector_id=connector_id, mode=mode))
    if json_out or not result.success:
        output_result(result, as_json=json_out)
        return
    output_result(result, title=f"Run: {result.data.run.id}")


@app.command("list")
def list_runs(
    connector: str | None = typer.Option(None, "--connector", "-c"),
    mode: str | None = typer.Option(None, "--mode", "-m"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List reconciliation runs, newest first."""
    from reconspine.ops.requests import ListRunsRequest
    from reconspine.ops.runs import list_runs as _list

    ctx, _ = make_context(database)
    request = ListRunsRequest(
        connector_id=connector, mode=mode, status=status, limit=limit, offset=offset
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Runs")


@app.command("show")
def show(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show run details and summary."""
    from reconspine.ops.requests import GetRunRequest
    from reconspine.ops.runs import get_run

    ctx, _ = make_context(database)
    output_result(get_run(ctx, GetRunRequest(run_id=run_id)), as_json=json_out, title=f"Run: {run_id}")


@app.command("cancel")
def cancel(
    run_id: str = typer.Argument(..., help="Run ID"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel a pending or in-progress run."""
    from reconspine.ops.requests import CancelRunRequest
    from reconspine.ops.runs import cancel_run

    ctx, _ = make_context(database, dry_run=dry_run)
    output_result(cancel_run(ctx, CancelRunRequest(run_id=run_id)), as_json=json_out, title="Cancelled")


@app.command("resume")
def resume(
    connector_id: str = typer.Argument(..., help="Connector the run belongs to"),
    run_id: str = typer.Argument(..., help="Failed or cancelled run ID"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only check that the run can be resumed"),
    connectors: str | None = typer.Option(
        None, "--connectors", help="module:callable returning a ConnectorRegistry"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start a fresh pass for a failed or cancelled run."""
    from reconspine.ops.requests import ResumeRunRequest
    from reconspine.ops.runs import resume_run

    registry = connectors_or_exit(connectors)
    ctx, _ = make_context(database, dry_run=dry_run, connectors=registry)
    result = resume_run(ctx, ResumeRunRequest(connector_id=connector_id, run_id=run_id))
    if json_out or not result.success:
        output_result(result, as_json=json_out)
        return
    output_result(result, title=f"Run: {result.data.run.id}")


@app.command("report")
def report(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Discrepancies found by a run, by type and current resolution."""
    from reconspine.ops.requests import GetRunReportRequest
    from reconspine.ops.runs import get_run_report

    ctx, _ = make_context(database)
    result = get_run_report(ctx, GetRunReportRequest(run_id=run_id))
    output_result(result, as_json=json_out, title=f"Run report: {run_id}")
