"""CLI command modules for trackline."""

from __future__ import annotations

import typer

from . import events, status


def register_commands(app: typer.Typer) -> None:
    """Attach every trackline command to *app*."""
    app.command(name="track")(events.track)
    app.command(name="flush")(events.flush)
    app.command(name="reset")(events.reset)
    app.command(name="status")(status.status)
    app.command(name="server")(status.server)


__all__ = ["register_commands"]
