"""Identity store: distinct id, name tag and super properties.

Provides:
- IdentifierProvider capability for the default distinct id
- RandomIdentifierProvider and MachineIdentifierProvider
- IdentityStore holding the active identity
"""

from __future__ import annotations

import copy
import getpass
import hashlib
import logging
import socket
import uuid
from typing import Any, Mapping, Protocol, runtime_checkable

from .values import validate_properties

logger = logging.getLogger(__name__)

UNSET: Any = object()


@runtime_checkable
class IdentifierProvider(Protocol):
    """Supplies the distinct id used when none was set explicitly."""

    def default_identifier(self) -> str: ...


class RandomIdentifierProvider:
    """Random UUID per call. The value is persisted with the snapshot."""

    def default_identifier(self) -> str:
        return str(uuid.uuid4())


class MachineIdentifierProvider:
    """Stable identifier derived from hostname + username.

    Returns the first 32 hex characters of a SHA-256 hash so the raw host
    and user names never leave the device. Falls back to a random UUID when
    the host cannot be identified.
    """

    def default_identifier(self) -> str:
        try:
            raw = f"{socket.gethostname()}:{getpass.getuser()}"
        except (OSError, KeyError) as exc:
            logger.debug("Could not derive machine identifier: %s", exc)
            return str(uuid.uuid4())
        return hashlib.sha256(raw.encode()).hexdigest()[:32]


class IdentityStore:
    """Active identity and super properties for one tracker.

    Not thread-safe on its own; the tracker only touches it from its serial
    work queue.
    """

    def __init__(self, provider: IdentifierProvider | None = None) -> None:
        self.provider: IdentifierProvider = provider or RandomIdentifierProvider()
        self.distinct_id: str = self._generate_default()
        self.name_tag: str | None = None
        self._super_properties: dict[str, Any] = {}

    def _generate_default(self) -> str:
        value = self.provider.default_identifier()
        if not isinstance(value, str) or not value:
            logger.warning("Identifier provider returned an empty id, using a random UUID")
            return str(uuid.uuid4())
        return value

    def identify(self, distinct_id: str) -> bool:
        """Replace the active distinct id. Empty ids are ignored."""
        if not isinstance(distinct_id, str) or not distinct_id:
            logger.warning("identify() called with an empty distinct id; ignoring")
            return False
        self.distinct_id = distinct_id
        return True

    def register_super_properties(self, properties: Mapping[str, Any]) -> None:
        """Merge *properties* into the super properties, overwriting."""
        self._super_properties.update(validate_properties(properties))

    def register_super_properties_once(
        self,
        properties: Mapping[str, Any],
        default_value: Any = UNSET,
    ) -> None:
        """Merge only keys that are absent, or equal to *default_value*."""
        validated = validate_properties(properties)
        for key, value in validated.items():
            if key not in self._super_properties:
                self._super_properties[key] = value
            elif default_value is not UNSET and self._super_properties[key] == default_value:
                self._super_properties[key] = value

    def unregister_super_property(self, name: str) -> None:
        self._super_properties.pop(name, None)

    def clear_super_properties(self) -> None:
        self._super_properties.clear()

    def current_super_properties(self) -> dict[str, Any]:
        """Return a deep copy that later mutations do not affect."""
        return copy.deepcopy(self._super_properties)

    def reset(self) -> None:
        """Forget everything and regenerate the default distinct id."""
        self._super_properties.clear()
        self.name_tag = None
        self.distinct_id = self._generate_default()

    def restore(
        self,
        distinct_id: str,
        name_tag: str | None,
        super_properties: Mapping[str, Any],
    ) -> None:
        """Load state from a snapshot."""
        if distinct_id:
            self.distinct_id = distinct_id
        self.name_tag = name_tag
        self._super_properties = dict(super_properties)
