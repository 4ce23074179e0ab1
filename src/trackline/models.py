"""Event and queue entry records."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import ulid


def new_event_id() -> str:
    """Generate a new ULID string for an event."""
    return str(ulid.ULID())


@dataclass(frozen=True)
class Event:
    """A tracked event, immutable once built.

    Attributes:
        name: Event name. ``None`` only for raw custom-shaped events.
        timestamp: UTC instant the event was tracked.
        properties: Merged, wire-normalized properties.
        body: Extra top-level keys of custom-shaped events.
        event_id: ULID identifying the event in the queue and on the wire.
    """

    name: str | None
    timestamp: datetime
    properties: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=new_event_id)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready payload sent to the ingestion endpoint."""
        payload: dict[str, Any] = copy.deepcopy(self.body)
        if self.name is not None:
            payload["event"] = self.name
        payload["event_id"] = self.event_id
        payload["properties"] = copy.deepcopy(self.properties)
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "name": self.name,
            "timestamp": self.timestamp.timestamp(),
            "properties": copy.deepcopy(self.properties),
            "body": copy.deepcopy(self.body),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        return cls(
            name=data.get("name"),
            timestamp=datetime.fromtimestamp(float(data["timestamp"]), tz=timezone.utc),
            properties=dict(data.get("properties") or {}),
            body=dict(data.get("body") or {}),
            event_id=str(data["event_id"]),
        )


@dataclass
class QueueEntry:
    """An event waiting for delivery, with its retry bookkeeping."""

    event: Event
    enqueued_at: float
    attempts: int = 0

    @property
    def entry_id(self) -> str:
        return self.event.event_id
