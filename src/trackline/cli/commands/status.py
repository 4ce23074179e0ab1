"""Status commands: queue health, endpoint probe and server configuration."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from trackline.config import default_config_path, load_config, save_server_url
from trackline.persistence import snapshot_path_for
from trackline.queue import QueueStats
from trackline.transport import endpoint_for, normalize_server_url

from .options import TokenOption, open_tracker

console = Console()

PROBE_TIMEOUT = 5.0


def humanize_timedelta(td: timedelta) -> str:
    """Convert a timedelta into a short string such as '3m 12s' or '1d 4h'."""
    total_seconds = int(td.total_seconds())
    if total_seconds < 0:
        return "0s"

    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days > 0:
        return f"{days}d {hours}h" if hours else f"{days}d"
    if hours > 0:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    if minutes > 0:
        return f"{minutes}m {seconds}s" if seconds else f"{minutes}m"
    return f"{seconds}s"


def format_queue_health(stats: QueueStats, target_console: Console) -> None:
    """Render queue statistics as a summary panel plus breakdown tables."""
    summary_lines = [
        f"[bold]Queue Depth:[/bold] {stats.total_queued:,} event(s)",
        f"[bold]Retried:[/bold]    {stats.total_retried:,}",
    ]
    if stats.oldest_event_age is not None:
        summary_lines.append(
            f"[bold]Oldest Event:[/bold] {humanize_timedelta(stats.oldest_event_age)} ago"
        )

    target_console.print(
        Panel(
            "\n".join(summary_lines),
            title="Queue Health",
            border_style="cyan",
            expand=False,
        )
    )

    if stats.retry_distribution:
        retry_table = Table(title="Retry Distribution", header_style="bold", expand=False)
        retry_table.add_column("Bucket", style="dim")
        retry_table.add_column("Count", justify="right")
        for bucket in ("0 retries", "1-3 retries", "4+ retries"):
            if bucket in stats.retry_distribution:
                retry_table.add_row(bucket, str(stats.retry_distribution[bucket]))
        target_console.print(retry_table)

    if stats.top_event_names:
        name_table = Table(title="Top Events", header_style="bold", expand=False)
        name_table.add_column("Event", style="cyan")
        name_table.add_column("Count", justify="right")
        for name, count in stats.top_event_names:
            name_table.add_row(name, str(count))
        target_console.print(name_table)


def _check_server_connection(server_url: str) -> tuple[str, str]:
    """Probe the ingestion endpoint with an empty batch.

    Returns:
        Tuple of (rich-formatted status string, detail message).
    """
    url = endpoint_for(server_url)
    try:
        with httpx.Client(timeout=PROBE_TIMEOUT) as client:
            response = client.post(
                url,
                content=b'{"events":[]}',
                headers={"Content-Type": "application/json"},
            )
    except httpx.TimeoutException:
        return (
            "[red]Unreachable[/red]",
            "Connection timeout. Events stay queued until the server is reachable.",
        )
    except httpx.ConnectError:
        return (
            "[red]Unreachable[/red]",
            "Connection refused. Events stay queued until the server is reachable.",
        )
    except httpx.HTTPError as exc:
        return ("[red]Error[/red]", f"Probe failed: {str(exc)[:80]}")

    if 200 <= response.status_code < 300:
        return ("[green]Connected[/green]", "Server accepted an empty batch.")
    if response.status_code in (401, 403):
        return (
            "[yellow]Rejected[/yellow]",
            f"Server returned HTTP {response.status_code}; check the project token.",
        )
    return ("[yellow]Unexpected[/yellow]", f"Server returned HTTP {response.status_code}.")


def status(
    check: bool = typer.Option(
        False, "--check", "-c", help="Probe the ingestion endpoint"
    ),
    token: str = TokenOption,
) -> None:
    """Show queue health and delivery settings."""
    with open_tracker(token) as tracker:
        stats = tracker.queue_stats()
        server_url = tracker.server_url
        distinct_id = tracker.distinct_id

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Server URL", f"[cyan]{server_url}[/cyan]")
    table.add_row("Distinct ID", distinct_id)
    table.add_row("Snapshot", f"[dim]{snapshot_path_for(token)}[/dim]")
    if check:
        connection, note = _check_server_connection(server_url)
        table.add_row("Connection", connection)
        table.add_row("", f"[dim]{note}[/dim]")
    console.print(Panel(table, title="trackline", border_style="cyan", expand=False))

    format_queue_health(stats, console)


def server(
    url: Optional[str] = typer.Argument(None, help="Ingestion server URL to set"),
) -> None:
    """Show or set the ingestion server URL.

    Examples:
        trackline server
        trackline server https://inputs.example.com
    """
    if url is None:
        console.print(f"Server URL: [cyan]{load_config().server_url}[/cyan]")
        console.print(f"Config File: [dim]{default_config_path()}[/dim]")
        return

    normalized_url = normalize_server_url(url)
    parsed = urlparse(normalized_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        console.print(
            "[red]Error:[/red] Invalid server URL. Use a full URL, "
            "for example: https://inputs.example.com"
        )
        raise typer.Exit(1)

    path = save_server_url(normalized_url)
    console.print(f"[green]✓[/green] Server set to [cyan]{normalized_url}[/cyan]")
    console.print(f"[dim]Saved to {path}[/dim]")
