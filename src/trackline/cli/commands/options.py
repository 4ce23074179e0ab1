"""Options and helpers shared by the trackline commands."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import typer

from trackline.lifecycle import LifecycleNotifier
from trackline.tracker import Tracker

TOKEN_ENV_VAR = "TRACKLINE_TOKEN"

TokenOption = typer.Option(
    ...,
    "--token",
    "-t",
    envvar=TOKEN_ENV_VAR,
    help=f"Project token (or set {TOKEN_ENV_VAR})",
)


def open_tracker(
    token: str,
    network_activity: Optional[Callable[[bool], None]] = None,
) -> Tracker:
    """Build a tracker for one CLI invocation.

    No periodic timer runs and process-wide lifecycle signals are not
    observed; state is restored from and archived to the snapshot file.
    """
    return Tracker(
        token,
        lifecycle=LifecycleNotifier(),
        network_activity=network_activity,
        start_timer=False,
    )


def parse_property(raw: str) -> tuple[str, Any]:
    """Parse ``key=value``; JSON values keep their type, anything else is a string."""
    key, sep, text = raw.partition("=")
    key = key.strip()
    if not sep or not key:
        raise typer.BadParameter(f"Expected key=value, got {raw!r}")
    try:
        value: Any = json.loads(text)
    except ValueError:
        value = text
    return key, value
