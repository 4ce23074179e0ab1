"""Delivery engine: batches queued events and submits them.

Each flush cycle walks a small state machine built on
``transitions.Machine``::

    idle -> batching -> sending -> acked  -> idle
                  \\             \\-> failed -> idle
                   \\-> idle (nothing to send)

The engine itself never blocks: ``launch`` runs the network submission
(on the tracker's network worker) and ``post`` hands the completion back
to the tracker's serial work queue. Both default to calling inline, which
keeps the engine usable synchronously in tests.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from transitions import Machine

from .errors import TransportError
from .models import QueueEntry
from .queue import EventQueue
from .transport import AckInfo, Transport

logger = logging.getLogger(__name__)

STATES = ["idle", "batching", "sending", "acked", "failed"]

TRANSITIONS: list[dict[str, Any]] = [
    {"trigger": "start_batching", "source": "idle", "dest": "batching"},
    {"trigger": "batch_empty", "source": "batching", "dest": "idle"},
    {"trigger": "start_sending", "source": "batching", "dest": "sending"},
    {"trigger": "delivery_acknowledged", "source": "sending", "dest": "acked"},
    {"trigger": "delivery_failed", "source": "sending", "dest": "failed"},
    {"trigger": "cycle_finished", "source": ["acked", "failed"], "dest": "idle"},
]

# Outcomes reported in CycleResult
DELIVERED = "delivered"
DROPPED = "dropped"
FAILED = "failed"


def _call_now(fn: Callable[..., Any], *args: Any) -> None:
    fn(*args)


def encode_batch(batch: list[QueueEntry]) -> bytes:
    """Serialize a batch into the JSON request body."""
    body = {"events": [entry.event.to_wire() for entry in batch]}
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


@dataclass
class CycleResult:
    """Outcome of one completed delivery cycle.

    Attributes:
        outcome: One of ``"delivered"``, ``"dropped"``, ``"failed"``.
        batch_size: Number of events in the batch.
        status_code: HTTP status when the transport reported one.
        error: Error message for dropped and failed batches.
    """

    outcome: str
    batch_size: int
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        """True when the batch left the queue (delivered or dropped)."""
        return self.outcome in (DELIVERED, DROPPED)


@dataclass
class _Outcome:
    ack: Optional[AckInfo] = None
    error: Optional[TransportError] = None


class DeliveryEngine:
    """Drives flush cycles against an ``EventQueue``.

    Only one cycle runs at a time; a request arriving mid-cycle is
    coalesced. After a failure, non-forced cycles wait out an exponential
    backoff window: ``min(base * 2**(failures - 1), max)`` seconds.
    """

    def __init__(
        self,
        queue: EventQueue,
        transport: Transport,
        endpoint: Callable[[], str],
        *,
        batch_size: int = 50,
        backoff_base_seconds: float = 60.0,
        backoff_max_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
        launch: Callable[..., Any] = _call_now,
        post: Callable[..., Any] = _call_now,
        on_cycle_complete: Callable[[CycleResult], None] | None = None,
        network_activity: Callable[[bool], None] | None = None,
        show_network_activity_indicator: bool = True,
    ) -> None:
        self.queue = queue
        self.transport = transport
        self._endpoint = endpoint
        self.batch_size = batch_size
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._clock = clock
        self._launch = launch
        self._post = post
        self.on_cycle_complete = on_cycle_complete
        self.network_activity = network_activity
        self.show_network_activity_indicator = show_network_activity_indicator

        self.delivered_count = 0
        self.dropped_count = 0
        self.consecutive_failures = 0
        self.backoff_seconds = 0.0
        self.last_flush: Optional[datetime] = None
        self.last_result: Optional[CycleResult] = None
        self._retry_at: Optional[float] = None

        # Machine attaches ``state`` and the trigger methods to self
        self.state: str = ""
        self._machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,
        )

    # ── Backoff ───────────────────────────────────────────────────

    def in_backoff(self) -> bool:
        return self._retry_at is not None and self._clock() < self._retry_at

    def retry_in(self) -> float:
        """Seconds left in the backoff window (0 when not backing off)."""
        if self._retry_at is None:
            return 0.0
        return max(0.0, self._retry_at - self._clock())

    def _grow_backoff(self) -> None:
        self.consecutive_failures += 1
        self.backoff_seconds = min(
            self.backoff_base_seconds * (2 ** (self.consecutive_failures - 1)),
            self.backoff_max_seconds,
        )
        self._retry_at = self._clock() + self.backoff_seconds

    def _reset_backoff(self) -> None:
        self.consecutive_failures = 0
        self.backoff_seconds = 0.0
        self._retry_at = None

    # ── Cycle ─────────────────────────────────────────────────────

    def start_cycle(self, force: bool = False) -> bool:
        """Begin a flush cycle if possible.

        Args:
            force: Ignore the backoff window (manual flushes).

        Returns:
            True if a batch was handed to the transport.
        """
        if self.state != "idle":
            logger.debug("Flush already in progress (%s); coalescing request", self.state)
            return False
        if not force and self.in_backoff():
            logger.debug("Backing off for another %.1fs; skipping flush", self.retry_in())
            return False

        self.start_batching()
        batch = self.queue.drain_batch(self.batch_size)
        if not batch:
            self.batch_empty()
            return False

        try:
            payload = encode_batch(batch)
        except (TypeError, ValueError) as exc:
            logger.error("Dropping %d event(s) that cannot be serialized: %s", len(batch), exc)
            self.queue.acknowledge(batch)
            self.dropped_count += len(batch)
            self.batch_empty()
            return False

        self.start_sending()
        logger.debug("Submitting batch of %d event(s)", len(batch))
        self._set_activity(True)
        self._launch(self._submit, batch, payload)
        return True

    def _submit(self, batch: list[QueueEntry], payload: bytes) -> None:
        """Network side of the cycle. Never raises."""
        try:
            ack = self.transport.submit(self._endpoint(), payload)
            outcome = _Outcome(ack=ack)
        except TransportError as exc:
            outcome = _Outcome(error=exc)
        except Exception as exc:
            logger.debug("Transport raised unexpectedly", exc_info=True)
            outcome = _Outcome(error=TransportError(f"Unexpected transport failure: {exc}"))
        self._post(self._complete, batch, outcome)

    def _complete(self, batch: list[QueueEntry], outcome: _Outcome) -> None:
        self._set_activity(False)
        error = outcome.error

        if error is None:
            self.delivery_acknowledged()
            self.queue.acknowledge(batch)
            self.delivered_count += len(batch)
            self.last_flush = datetime.now(timezone.utc)
            self._reset_backoff()
            status = outcome.ack.status_code if outcome.ack else None
            result = CycleResult(DELIVERED, len(batch), status_code=status)
            logger.debug("Delivered %d event(s)", len(batch))
        elif error.permanent:
            self.delivery_acknowledged()
            self.queue.acknowledge(batch)
            self.dropped_count += len(batch)
            result = CycleResult(DROPPED, len(batch), error.status_code, str(error))
            logger.warning(
                "Server permanently rejected %d event(s); dropping them: %s",
                len(batch),
                error,
            )
        else:
            self.delivery_failed()
            self.queue.requeue(batch)
            self._grow_backoff()
            result = CycleResult(FAILED, len(batch), error.status_code, str(error))
            logger.warning(
                "Delivery failed (attempt %d, next retry in %.1fs): %s",
                self.consecutive_failures,
                self.backoff_seconds,
                error,
            )

        self.cycle_finished()
        self.last_result = result
        if self.on_cycle_complete is not None:
            try:
                self.on_cycle_complete(result)
            except Exception:
                logger.exception("Cycle completion callback failed")

        # Keep draining until the queue is empty or a batch fails
        if result.resolved and self.queue.pending() > 0:
            self._post(self.start_cycle, True)

    def _set_activity(self, active: bool) -> None:
        if self.network_activity is None or not self.show_network_activity_indicator:
            return
        try:
            self.network_activity(active)
        except Exception:
            logger.debug("Network activity hook failed", exc_info=True)
