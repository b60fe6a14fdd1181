"""
CLI: ``recon actions`` — remediation action log.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import make_context, output_paged

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_actions(
    connector: str | None = typer.Option(None, "--connector", "-c"),
    discrepancy_id: str | None = typer.Option(None, "--discrepancy"),
    action: str | None = typer.Option(None, "--action", "-a"),
    result_filter: str | None = typer.Option(None, "--result", help="created or rejected"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List logged remediation requests."""
    from reconspine.ops.actions import list_remediation_actions
    from reconspine.ops.requests import ListRemediationActionsRequest

    ctx, _ = make_context(database)
    request = ListRemediationActionsRequest(
        connector_id=connector,
        discrepancy_id=discrepancy_id,
        action=action,
        result=result_filter,
        limit=limit,
        offset=offset,
    )
    output_paged(list_remediation_actions(ctx, request), as_json=json_out, title="Remediation actions")
