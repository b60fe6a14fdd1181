"""
CLI: ``recon db`` — database management commands.
"""

from __future__ import annotations

import typer

from reconspine.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path or sqlite:/// URL"),
) -> None:
    """Initialise database schema (create tables)."""
    from reconspine.core.connection import create_connection
    from reconspine.core.schema import RECON_TABLES
    from reconspine.core.settings import get_settings

    target = database or get_settings().database_url
    conn = create_connection(target, init_schema=True)
    conn.close()
    console.print(f"[green]Schema ready[/green] ({len(RECON_TABLES)} tables) at {target}")
