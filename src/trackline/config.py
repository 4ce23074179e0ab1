"""Tracker configuration management.

Settings come from three layers, later layers winning:

1. ``TrackerConfig`` defaults
2. ``<trackline home>/config.toml`` (``[tracker]`` table) and the
   ``TRACKLINE_SERVER_URL`` environment variable
3. Keyword arguments passed to ``Tracker``
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import toml  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://inputs.trackline.io"
HOME_ENV_VAR = "TRACKLINE_HOME"
SERVER_URL_ENV_VAR = "TRACKLINE_SERVER_URL"


def trackline_home() -> Path:
    """Return the trackline state directory (``~/.trackline`` by default)."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".trackline"


def default_config_path() -> Path:
    return trackline_home() / "config.toml"


@dataclass
class TrackerConfig:
    """Settings for a tracker instance."""

    server_url: str = DEFAULT_SERVER_URL
    flush_interval: float = 60.0
    flush_on_background: bool = True
    show_network_activity_indicator: bool = True
    batch_size: int = 50
    max_queue_size: int = 500
    request_timeout: float = 60.0
    backoff_base_seconds: float = 60.0
    backoff_max_seconds: float = 600.0
    app_version: str | None = None
    app_release: str | None = None

    def with_overrides(self, **overrides: Any) -> TrackerConfig:
        """Return a copy with every non-``None`` override applied."""
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown tracker option(s): {', '.join(sorted(unknown))}")
        values = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **values)


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Coerce a TOML value to the type of the default, or raise TypeError."""
    if default is None:
        if isinstance(value, str):
            return value
        raise TypeError(f"{name} must be a string")
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise TypeError(f"{name} must be a boolean")
    if isinstance(default, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise TypeError(f"{name} must be an integer")
    if isinstance(default, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise TypeError(f"{name} must be a number")
    if isinstance(value, str):
        return value
    raise TypeError(f"{name} must be a string")


def load_config(config_path: Path | None = None) -> TrackerConfig:
    """Load tracker settings from the config file and environment.

    A missing file yields defaults. A malformed file, unknown keys and
    values of the wrong type are logged and ignored.
    """
    path = config_path or default_config_path()
    config = TrackerConfig()
    values: dict[str, Any] = {}

    if path.exists():
        try:
            data: dict[str, Any] = toml.load(path)
        except (toml.TomlDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", path, exc)
            data = {}

        section = data.get("tracker")
        if isinstance(section, dict):
            defaults = {f.name: getattr(config, f.name) for f in dataclasses.fields(config)}
            for key, raw in section.items():
                if key not in defaults:
                    logger.warning("Ignoring unknown config key tracker.%s", key)
                    continue
                try:
                    values[key] = _coerce(key, raw, defaults[key])
                except TypeError as exc:
                    logger.warning("Ignoring config key tracker.%s: %s", key, exc)

    env_url = os.environ.get(SERVER_URL_ENV_VAR)
    if env_url:
        values["server_url"] = env_url

    return dataclasses.replace(config, **values)


def save_server_url(url: str, config_path: Path | None = None) -> Path:
    """Persist the server URL into the config file, keeping other settings."""
    path = config_path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {}
    if path.exists():
        data = toml.load(path)

    section = data.get("tracker")
    if not isinstance(section, dict):
        section = {}
        data["tracker"] = section
    section["server_url"] = url

    with open(path, "w", encoding="utf-8") as f:
        toml.dump(data, f)
    return path
