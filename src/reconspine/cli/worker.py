"""
CLI: ``recon worker`` — run the operation worker pool.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import connectors_or_exit, console, make_context

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    connectors: str | None = typer.Option(
        None, "--connectors", help="module:callable returning a ConnectorRegistry"
    ),
    threads: int | None = typer.Option(None, "--threads", "-t", help="Concurrent execution threads"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between polls"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Max operations per poll"),
    with_scheduler: bool = typer.Option(
        False, "--with-scheduler", help="Also fire due reconciliation schedules"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Start the worker pool; runs until SIGINT/SIGTERM.

    Example::

        recon worker start --connectors myapp.recon:build_registry --threads 8
    """
    from reconspine.execution.engine import OperationEngine
    from reconspine.execution.worker import OperationWorker
    from reconspine.reconciliation.runner import ReconciliationRunner
    from reconspine.reconciliation.scheduler import ReconciliationScheduler

    registry = connectors_or_exit(connectors)
    ctx, conn = make_context(database, connectors=registry)
    engine = OperationEngine(conn, registry, settings=ctx.settings)
    worker = OperationWorker(
        engine, max_threads=threads, batch_size=batch_size, poll_interval=poll_interval
    )

    scheduler = None
    if with_scheduler:
        scheduler = ReconciliationScheduler(conn, ReconciliationRunner(conn, registry))
        scheduler.start(ctx.settings.scheduler_interval_seconds)

    console.print(
        f"[bold green]Starting recon worker[/bold green] {worker.worker_id} "
        f"(scheduler={'on' if scheduler else 'off'})"
    )
    try:
        worker.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
    finally:
        if scheduler is not None:
            scheduler.stop()


@app.command("run-once")
def run_once(
    connectors: str | None = typer.Option(
        None, "--connectors", help="module:callable returning a ConnectorRegistry"
    ),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Max operations to dispatch"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Dispatch one batch of due operations, wait for them, and print stats."""
    from reconspine.execution.engine import OperationEngine
    from reconspine.execution.worker import OperationWorker

    registry = connectors_or_exit(connectors)
    ctx, conn = make_context(database, connectors=registry)
    worker = OperationWorker(OperationEngine(conn, registry, settings=ctx.settings), batch_size=batch_size)
    try:
        worker.run_once(wait_for_completion=True)
    finally:
        worker.close()
    stats = worker.get_stats()
    typer.echo(
        f"dispatched={stats.total_dispatched} completed={stats.total_completed} "
        f"retrying={stats.total_retrying} dead_lettered={stats.total_dead_lettered} "
        f"errors={stats.total_errors}"
    )
