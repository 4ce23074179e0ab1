"""Snapshot persistence for identity, timers and the event queue.

Provides:
- DurableStore protocol with FileStore (atomic temp file + rename) and
  MemoryStore implementations
- Pydantic models describing the versioned snapshot schema
- PersistenceManager: archive() / restore()
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from .config import trackline_home
from .errors import PersistenceError
from .identity import IdentityStore
from .models import Event, QueueEntry
from .queue import EventQueue
from .timers import TimerRegistry
from .values import decode_tagged, encode_tagged

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@runtime_checkable
class DurableStore(Protocol):
    """Holds one full snapshot; writes replace it atomically."""

    def write_snapshot(self, data: bytes) -> None: ...

    def read_snapshot(self) -> Optional[bytes]: ...


def snapshot_path_for(token: str, home: Path | None = None) -> Path:
    """Resolve a deterministic snapshot path for a project token."""
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
    return (home or trackline_home()) / "snapshots" / f"snapshot-{digest}.json"


class FileStore:
    """Snapshot file written with temp file + rename.

    A crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def write_snapshot(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: write to temp file in same directory, then rename
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except Exception:
            # Clean up temp file on failure
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def read_snapshot(self) -> Optional[bytes]:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class MemoryStore:
    """In-process store, for tests and short-lived embedding."""

    def __init__(self, data: bytes | None = None) -> None:
        self.data = data
        self.writes = 0

    def write_snapshot(self, data: bytes) -> None:
        self.data = data
        self.writes += 1

    def read_snapshot(self) -> Optional[bytes]:
        return self.data


# ── Snapshot schema ───────────────────────────────────────────────


class EventRecord(BaseModel):
    """A queued event as persisted."""

    event_id: str = Field(min_length=1)
    name: str | None = None
    timestamp: float
    properties: dict[str, Any] = Field(default_factory=dict)
    body: dict[str, Any] = Field(default_factory=dict)


class EntryRecord(BaseModel):
    """A queue entry as persisted."""

    event: EventRecord
    enqueued_at: float
    attempts: int = Field(default=0, ge=0)


class IdentityRecord(BaseModel):
    """Identity as persisted. Super property dates are tagged."""

    distinct_id: str = Field(min_length=1)
    name_tag: str | None = None
    super_properties: dict[str, Any] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """Top-level snapshot document."""

    version: int = SNAPSHOT_VERSION
    token: str
    archived_at: float
    identity: IdentityRecord
    timed_events: dict[str, float] = Field(default_factory=dict)
    queue: list[EntryRecord] = Field(default_factory=list)


@dataclass
class RestoredState:
    """Decoded snapshot contents, ready to load into the live stores."""

    distinct_id: str
    name_tag: Optional[str]
    super_properties: dict[str, Any]
    timed_events: dict[str, float] = field(default_factory=dict)
    entries: list[QueueEntry] = field(default_factory=list)

    def apply(self, identity: IdentityStore, timers: TimerRegistry, queue: EventQueue) -> None:
        identity.restore(self.distinct_id, self.name_tag, self.super_properties)
        timers.restore(self.timed_events)
        queue.restore(self.entries)


class PersistenceManager:
    """Archives and restores tracker state through a ``DurableStore``.

    Writes are serialized by a lock so concurrent archive() calls never
    interleave partial snapshots.
    """

    def __init__(
        self,
        store: DurableStore,
        token: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.token = token
        self._clock = clock
        self._lock = threading.Lock()

    def build_snapshot(
        self,
        identity: IdentityStore,
        timers: TimerRegistry,
        queue: EventQueue,
    ) -> Snapshot:
        return Snapshot(
            token=self.token,
            archived_at=self._clock(),
            identity=IdentityRecord(
                distinct_id=identity.distinct_id,
                name_tag=identity.name_tag,
                super_properties=encode_tagged(identity.current_super_properties()),
            ),
            timed_events=timers.snapshot(),
            queue=[
                EntryRecord(
                    event=EventRecord(**entry.event.to_dict()),
                    enqueued_at=entry.enqueued_at,
                    attempts=entry.attempts,
                )
                for entry in queue.entries()
            ],
        )

    def archive(
        self,
        identity: IdentityStore,
        timers: TimerRegistry,
        queue: EventQueue,
    ) -> None:
        """Write a snapshot of the current state.

        Raises:
            PersistenceError: If the store cannot be written.
        """
        snapshot = self.build_snapshot(identity, timers, queue)
        data = snapshot.model_dump_json().encode("utf-8")
        with self._lock:
            try:
                self.store.write_snapshot(data)
            except Exception as exc:
                raise PersistenceError(f"Could not write snapshot: {exc}") from exc
        logger.debug("Archived snapshot with %d queued event(s)", len(snapshot.queue))

    def restore(self) -> Optional[RestoredState]:
        """Load the last snapshot for this token.

        Returns None when there is no snapshot or it is unreadable,
        corrupt, of another schema version, or for another token.
        Never raises.
        """
        try:
            with self._lock:
                data = self.store.read_snapshot()
        except Exception as exc:
            logger.warning("Could not read snapshot, starting empty: %s", exc)
            return None
        if not data:
            return None

        try:
            snapshot = Snapshot.model_validate_json(data)
        except ValidationError as exc:
            logger.warning(
                "Discarding corrupt snapshot (%d error(s)); starting empty",
                exc.error_count(),
            )
            return None

        if snapshot.version != SNAPSHOT_VERSION:
            logger.warning("Discarding snapshot with unsupported version %s", snapshot.version)
            return None
        if snapshot.token != self.token:
            logger.warning("Snapshot belongs to another project token; starting empty")
            return None

        try:
            return RestoredState(
                distinct_id=snapshot.identity.distinct_id,
                name_tag=snapshot.identity.name_tag,
                super_properties=decode_tagged(snapshot.identity.super_properties),
                timed_events=dict(snapshot.timed_events),
                entries=[
                    QueueEntry(
                        event=Event.from_dict(record.event.model_dump()),
                        enqueued_at=record.enqueued_at,
                        attempts=record.attempts,
                    )
                    for record in snapshot.queue
                ],
            )
        except (ValueError, OverflowError, OSError, RecursionError) as exc:
            logger.warning("Discarding undecodable snapshot, starting empty: %s", exc)
            return None
