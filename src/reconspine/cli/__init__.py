"""
CLI layer for reconspine.

Provides a Typer application with sub-commands that delegate to the
operations layer (``reconspine.ops``).  All business logic lives in ops;
this package handles only terminal transport: argument parsing, coloured
output and table formatting.

Entry point::

    recon --help
"""

from reconspine.cli.app import app

__all__ = ["app"]
