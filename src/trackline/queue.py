"""Bounded in-memory event queue with single in-flight batch tracking."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Iterable, Optional

from .models import QueueEntry

logger = logging.getLogger(__name__)


@dataclass
class QueueStats:
    """Aggregate statistics about the event queue.

    Used by ``trackline status`` to display queue health information
    including depth, age, retry distribution, and top event names.
    """

    total_queued: int = 0
    in_flight: int = 0
    total_retried: int = 0
    oldest_event_age: Optional[timedelta] = None
    retry_distribution: dict[str, int] = field(default_factory=dict)
    top_event_names: list[tuple[str, int]] = field(default_factory=list)


def _retry_bucket(attempts: int) -> str:
    if attempts == 0:
        return "0 retries"
    if attempts <= 3:
        return "1-3 retries"
    return "4+ retries"


class EventQueue:
    """
    Ordered, bounded buffer of events awaiting upload.

    Features:
    - Strict FIFO ordering by insertion
    - Drop-oldest eviction once ``max_size`` entries are held
    - At most one batch in flight; entries stay in place while in flight
      so a failed batch keeps its original position

    Not thread-safe on its own; the tracker only touches it from its serial
    work queue.
    """

    MAX_QUEUE_SIZE = 500

    def __init__(
        self,
        max_size: int = MAX_QUEUE_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: list[QueueEntry] = []
        self._in_flight: set[str] = set()

    def enqueue(self, entry: QueueEntry) -> QueueEntry | None:
        """Append *entry*, evicting the oldest entry when full.

        Returns:
            The evicted entry, or ``None``.
        """
        evicted: QueueEntry | None = None
        if len(self._entries) >= self.max_size:
            evicted = self._entries.pop(0)
            self._in_flight.discard(evicted.entry_id)
            logger.warning(
                "Event queue full (%d events); dropped oldest event %r",
                self.max_size,
                evicted.event.name,
            )
        self._entries.append(entry)
        return evicted

    def drain_batch(self, max_count: int) -> list[QueueEntry]:
        """
        Mark up to *max_count* head entries as in flight and return them.

        Does not remove entries - use acknowledge() after successful delivery
        or requeue() after a failure. Returns an empty list while another
        batch is still in flight.
        """
        if self._in_flight or max_count < 1:
            return []
        batch = self._entries[:max_count]
        self._in_flight.update(entry.entry_id for entry in batch)
        return list(batch)

    def acknowledge(self, entries: Iterable[QueueEntry]) -> int:
        """Permanently remove *entries*. Returns how many were removed."""
        ids = {entry.entry_id for entry in entries}
        if not ids:
            return 0
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.entry_id not in ids]
        self._in_flight.difference_update(ids)
        return before - len(self._entries)

    def requeue(self, entries: Iterable[QueueEntry]) -> int:
        """Return failed *entries* to the queue with ``attempts`` incremented.

        Entries never left their positions, so order among themselves and
        relative to older entries is unchanged. Entries evicted or cleared
        in the meantime are ignored. Returns how many were requeued.
        """
        ids = {entry.entry_id for entry in entries}
        requeued = 0
        for entry in self._entries:
            if entry.entry_id in ids:
                entry.attempts += 1
                requeued += 1
        self._in_flight.difference_update(ids)
        return requeued

    def clear(self) -> None:
        """Remove all entries, including any in flight."""
        self._entries.clear()
        self._in_flight.clear()

    def restore(self, entries: Iterable[QueueEntry]) -> None:
        """Replace the contents with *entries*, keeping the newest that fit."""
        restored = list(entries)
        if len(restored) > self.max_size:
            logger.warning(
                "Restored queue holds %d events; keeping the newest %d",
                len(restored),
                self.max_size,
            )
            restored = restored[-self.max_size:]
        self._entries = restored
        self._in_flight.clear()

    def entries(self) -> list[QueueEntry]:
        """Ordered copy of all entries, in flight or not."""
        return list(self._entries)

    def size(self) -> int:
        return len(self._entries)

    def pending(self) -> int:
        """Number of entries not currently in flight."""
        return len(self._entries) - len(self._in_flight)

    @property
    def has_in_flight(self) -> bool:
        return bool(self._in_flight)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> QueueStats:
        """
        Compute aggregate statistics about the queue.

        Returns a QueueStats with:
        - total_queued: number of events in queue
        - in_flight: number of events in the batch being delivered
        - total_retried: number of events with attempts > 0
        - oldest_event_age: age of the oldest entry (None if empty)
        - retry_distribution: counts bucketed as '0 retries', '1-3 retries', '4+ retries'
        - top_event_names: top 5 event names by count, descending
        """
        if not self._entries:
            return QueueStats()

        oldest = min(entry.enqueued_at for entry in self._entries)
        names = Counter(entry.event.name or "(custom)" for entry in self._entries)
        buckets = Counter(_retry_bucket(entry.attempts) for entry in self._entries)

        return QueueStats(
            total_queued=len(self._entries),
            in_flight=len(self._in_flight),
            total_retried=sum(1 for entry in self._entries if entry.attempts > 0),
            oldest_event_age=timedelta(seconds=max(0.0, self._clock() - oldest)),
            retry_distribution=dict(buckets),
            top_event_names=names.most_common(5),
        )
