"""
CLI: ``recon schedule`` — per-connector reconciliation schedules.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import connectors_or_exit, console, make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_schedules(
    enabled: bool | None = typer.Option(None, "--enabled/--disabled", help="Filter by state"),
    limit: int = typer.Option(100, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List reconciliation schedules."""
    from reconspine.ops.requests import ListSchedulesRequest
    from reconspine.ops.schedules import list_schedules as _list

    ctx, _ = make_context(database)
    request = ListSchedulesRequest(enabled=enabled, limit=limit, offset=offset)
    output_paged(_list(ctx, request), as_json=json_out, title="Schedules")


@app.command("show")
def show(
    connector_id: str = typer.Argument(..., help="Connector ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a connector's schedule."""
    from reconspine.ops.requests import GetScheduleRequest
    from reconspine.ops.schedules import get_schedule

    ctx, _ = make_context(database)
    result = get_schedule(ctx, GetScheduleRequest(connector_id=connector_id))
    output_result(result, as_json=json_out, title=f"Schedule: {connector_id}")


@app.command("set")
def set_schedule(
    connector_id: str = typer.Argument(..., help="Connector ID"),
    mode: str = typer.Option("full", "--mode", "-m", help="full or delta"),
    frequency: str = typer.Option("daily", "--frequency", "-f", help="hourly, daily, weekly, monthly, cron"),
    cron: str | None = typer.Option(None, "--cron", help="Cron expression (frequency=cron only)"),
    day_of_week: int | None = typer.Option(None, "--day-of-week", help="0-6, 0 is Sunday"),
    day_of_month: int | None = typer.Option(None, "--day-of-month", help="1-28"),
    hour: int | None = typer.Option(None, "--hour", help="0-23 UTC"),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate and show without saving"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create or replace a connector's schedule.

    Example::

        recon schedule set hr-directory --frequency weekly --day-of-week 1 --hour 3
        recon schedule set crm --frequency cron --cron "*/15 * * * *" --mode delta
    """
    from reconspine.ops.requests import UpsertScheduleRequest
    from reconspine.ops.schedules import upsert_schedule

    ctx, _ = make_context(database, dry_run=dry_run)
    request = UpsertScheduleRequest(
        connector_id=connector_id,
        mode=mode,
        frequency=frequency,
        cron_expression=cron,
        day_of_week=day_of_week,
        day_of_month=day_of_month,
        hour_of_day=hour,
        enabled=enabled,
    )
    result = upsert_schedule(ctx, request)
    output_result(result, as_json=json_out, title="Schedule preview" if dry_run else "Schedule saved")


@app.command("enable")
def enable(
    connector_id: str = typer.Argument(..., help="Connector ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Enable a schedule (next fire time is recomputed from now)."""
    from reconspine.ops.requests import ToggleScheduleRequest
    from reconspine.ops.schedules import enable_schedule

    ctx, _ = make_context(database)
    result = enable_schedule(ctx, ToggleScheduleRequest(connector_id=connector_id))
    output_result(result, as_json=json_out, title="Enabled")


@app.command("disable")
def disable(
    connector_id: str = typer.Argument(..., help="Connector ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Disable a schedule without deleting it."""
    from reconspine.ops.requests import ToggleScheduleRequest
    from reconspine.ops.schedules import disable_schedule

    ctx, _ = make_context(database)
    result = disable_schedule(ctx, ToggleScheduleRequest(connector_id=connector_id))
    output_result(result, as_json=json_out, title="Disabled")


@app.command("delete")
def delete(
    connector_id: str = typer.Argument(..., help="Connector ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete a connector's schedule."""
    from reconspine.ops.requests import DeleteScheduleRequest
    from reconspine.ops.schedules import delete_schedule

    if not yes:
        typer.confirm(f"Delete the schedule for {connector_id}?", abort=True)

    ctx, _ = make_context(database)
    result = delete_schedule(ctx, DeleteScheduleRequest(connector_id=connector_id))
    if not result.success:
        output_result(result)
    console.print(f"[green]Deleted schedule for {connector_id}[/green]")


@app.command("tick")
def tick(
    connectors: str | None = typer.Option(
        None, "--connectors", help="module:callable returning a ConnectorRegistry"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Fire every due schedule once and exit (for cron-driven deployments)."""
    from reconspine.reconciliation.runner import ReconciliationRunner
    from reconspine.reconciliation.scheduler import ReconciliationScheduler

    registry = connectors_or_exit(connectors)
    _, conn = make_context(database, connectors=registry)
    scheduler = ReconciliationScheduler(conn, ReconciliationRunner(conn, registry))
    fired = scheduler.tick()
    typer.echo(f"fired={len(fired)}")
    for run_id in fired:
        typer.echo(run_id)
