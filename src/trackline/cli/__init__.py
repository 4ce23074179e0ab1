"""Command line interface for trackline."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from trackline import __version__
from trackline.cli.commands import register_commands

console = Console()

app = typer.Typer(
    name="trackline",
    help="Track events and manage the local trackline event queue",
    add_completion=False,
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"trackline {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show library debug logging"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the trackline version and exit",
    ),
) -> None:
    """trackline command line client."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


register_commands(app)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
