"""
Root Typer application for the ``recon`` CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from reconspine.core.logging import configure_logging

app = Typer(
    name="recon",
    help="recon — directory reconciliation and remediation engine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from reconspine import __version__

        typer.echo(f"recon-spine {__version__}")
        raise typer.Exit()


@app.callback()
def _root(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override RECON_LOG_LEVEL."),
    log_format: str | None = typer.Option(None, "--log-format", help="json or console."),
) -> None:
    """recon CLI — runs, discrepancies, operations, dead letters and schedules."""
    from reconspine.core.settings import get_settings

    settings = get_settings()
    fmt = (log_format or settings.log_format).lower()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=fmt == "json",
        to_stderr=True,
    )


# ── Sub-command registration ─────────────────────────────────────────────

from reconspine.cli.actions import app as actions_app  # noqa: E402
from reconspine.cli.conflicts import app as conflicts_app  # noqa: E402
from reconspine.cli.db import app as db_app  # noqa: E402
from reconspine.cli.discrepancies import app as disc_app  # noqa: E402
from reconspine.cli.dlq import app as dlq_app  # noqa: E402
from reconspine.cli.operations import app as ops_app  # noqa: E402
from reconspine.cli.runs import app as runs_app  # noqa: E402
from reconspine.cli.schedule import app as sched_app  # noqa: E402
from reconspine.cli.worker import app as worker_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(runs_app, name="runs", help="Reconciliation runs.")
app.add_typer(disc_app, name="discrepancies", help="Detected drift and remediation.")
app.add_typer(ops_app, name="ops", help="Corrective operations.")
app.add_typer(dlq_app, name="dlq", help="Dead-letter queue.")
app.add_typer(conflicts_app, name="conflicts", help="Conflict adjudications.")
app.add_typer(actions_app, name="actions", help="Remediation action log.")
app.add_typer(sched_app, name="schedule", help="Reconciliation schedules.")
app.add_typer(worker_app, name="worker", help="Operation worker and scheduler loop.")


def main() -> None:
    """Console-script entry point."""
    app()
