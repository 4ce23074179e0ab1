"""Event commands: track, flush and reset."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.status import Status

from trackline.delivery import FAILED

from .options import TokenOption, open_tracker, parse_property

console = Console()


class ActivitySpinner:
    """Network activity hook showing a spinner while a batch is uploading."""

    def __init__(self, target_console: Console) -> None:
        self._status = Status("[cyan]Uploading events...[/cyan]", console=target_console)
        self.active = False

    def __call__(self, active: bool) -> None:
        if active and not self.active:
            self._status.start()
        elif not active and self.active:
            self._status.stop()
        self.active = active

    def stop(self) -> None:
        self(False)


def track(
    event: str = typer.Argument(..., help="Event name"),
    prop: Optional[list[str]] = typer.Option(
        None,
        "--property",
        "-p",
        help="Event property as key=value (repeatable; JSON values are decoded)",
    ),
    distinct_id: Optional[str] = typer.Option(
        None, "--distinct-id", "-d", help="Identify as this user before tracking"
    ),
    flush_now: bool = typer.Option(
        False, "--flush", help="Upload queued events right away"
    ),
    timeout: float = typer.Option(30.0, "--timeout", help="Seconds to wait for the upload"),
    token: str = TokenOption,
) -> None:
    """Queue an event for delivery.

    Examples:
        trackline track Signup -p plan=pro -p seats=3
        trackline track Purchase -d user-42 --flush
    """
    properties = dict(parse_property(raw) for raw in prop or [])

    with open_tracker(token) as tracker:
        if distinct_id:
            tracker.identify(distinct_id)
        tracker.track(event, properties)
        if flush_now:
            tracker.flush()
            tracker.join(timeout)
        queued = tracker.queue_size()

    console.print(f"[green]✓[/green] Tracked [cyan]{event}[/cyan]")
    console.print(f"[dim]{queued} event(s) waiting for upload[/dim]")


def flush(
    timeout: float = typer.Option(30.0, "--timeout", help="Seconds to wait for the upload"),
    token: str = TokenOption,
) -> None:
    """Upload queued events now."""
    spinner = ActivitySpinner(console)
    with open_tracker(token, network_activity=spinner) as tracker:
        if tracker.queue_size() == 0:
            console.print("[dim]No queued events.[/dim]")
            return
        tracker.flush()
        settled = tracker.join(timeout)
        spinner.stop()
        engine = tracker.delivery
        result = engine.last_result
        remaining = tracker.queue_size()

    if not settled:
        console.print(f"[yellow]⚠ Upload still in progress after {timeout:g}s[/yellow]")
    if engine.delivered_count:
        console.print(f"[green]✓[/green] Delivered {engine.delivered_count} event(s)")
    if engine.dropped_count:
        console.print(
            f"[yellow]⚠ Server rejected {engine.dropped_count} event(s); they were dropped[/yellow]"
        )
    if result is not None and result.outcome == FAILED:
        console.print(f"[red]✗ Upload failed:[/red] {result.error}")
        console.print(f"[dim]{remaining} event(s) kept for a later retry[/dim]")
        raise typer.Exit(1)
    if remaining:
        console.print(f"[dim]{remaining} event(s) still queued[/dim]")


def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    token: str = TokenOption,
) -> None:
    """Forget the identity, super properties and every queued event."""
    if not yes:
        typer.confirm("Discard all queued events and reset the identity?", abort=True)

    with open_tracker(token) as tracker:
        tracker.reset()
        tracker.join()
        distinct_id = tracker.distinct_id

    console.print("[green]✓[/green] Tracker state reset")
    console.print(f"[dim]New distinct id: {distinct_id}[/dim]")
