"""Default contextual properties attached to every event.

Resolved once per tracker: library, runtime and platform information plus
the optional application version settings.
"""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from typing import Any

from . import __version__

logger = logging.getLogger(__name__)

LIB_NAME = "trackline-python"


@dataclass(frozen=True)
class DeviceContext:
    """Static platform state. Not persisted."""

    os_name: str | None = None
    os_version: str | None = None
    model: str | None = None
    runtime_version: str | None = None
    app_version: str | None = None
    app_release: str | None = None

    @classmethod
    def detect(
        cls,
        app_version: str | None = None,
        app_release: str | None = None,
    ) -> DeviceContext:
        """Inspect the running platform."""
        try:
            return cls(
                os_name=platform.system() or None,
                os_version=platform.release() or None,
                model=platform.machine() or None,
                runtime_version=platform.python_version(),
                app_version=app_version,
                app_release=app_release,
            )
        except OSError as exc:
            logger.debug("Platform detection failed: %s", exc)
            return cls(app_version=app_version, app_release=app_release)

    def default_properties(self) -> dict[str, Any]:
        """Return the automatic properties; unknown values are omitted."""
        properties: dict[str, Any] = {
            "$lib": LIB_NAME,
            "$lib_version": __version__,
            "$os": self.os_name,
            "$os_version": self.os_version,
            "$model": self.model,
            "$runtime_version": self.runtime_version,
            "$app_version": self.app_version,
            "$app_release": self.app_release,
        }
        return {key: value for key, value in properties.items() if value is not None}
