"""Flush scheduler: decides when delivery cycles are attempted.

Provides a daemon-threaded periodic timer, lifecycle-driven triggers and
the optional delegate gate consulted before every cycle.
"""

from __future__ import annotations

import logging
import threading
import weakref
from enum import Enum
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .lifecycle import LifecycleSignal

logger = logging.getLogger(__name__)


class FlushTrigger(str, Enum):
    PERIODIC = "periodic"
    BACKGROUND = "background"
    MANUAL = "manual"


@runtime_checkable
class FlushDelegate(Protocol):
    """Optional capability gating uploads.

    Return True to upload now, False to defer until the next trigger.
    """

    def should_flush(self) -> bool: ...


class FlushScheduler:
    """Periodic and lifecycle flush triggers for one tracker.

    ``dispatch`` receives every trigger; the tracker marshals it onto its
    serial work queue, where ``permits_flush()`` is consulted.

    The delegate is held through a weak reference: the scheduler never
    keeps it alive and silently permits flushing once it is gone.
    """

    def __init__(
        self,
        dispatch: Callable[[FlushTrigger], None],
        flush_interval: float = 60.0,
        flush_on_background: bool = True,
    ) -> None:
        self._dispatch = dispatch
        self._interval = float(flush_interval)
        self.flush_on_background = flush_on_background
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._running = False
        self._lock = threading.Lock()
        self._delegate_ref: Optional[Callable[[], Any]] = None

    # ── Delegate gate ─────────────────────────────────────────────

    @property
    def delegate(self) -> Any:
        if self._delegate_ref is None:
            return None
        return self._delegate_ref()

    @delegate.setter
    def delegate(self, value: Any) -> None:
        if value is None:
            self._delegate_ref = None
            return
        try:
            self._delegate_ref = weakref.ref(value)
        except TypeError:
            # Objects without weakref support are held strongly
            logger.debug("Delegate %r does not support weak references", value)
            self._delegate_ref = lambda: value

    def permits_flush(self) -> bool:
        """Consult the delegate, if any. Defaults to permitting the flush."""
        delegate = self.delegate
        if delegate is None:
            return True
        should_flush = getattr(delegate, "should_flush", None)
        if not callable(should_flush):
            return True
        try:
            allowed = bool(should_flush())
        except Exception:
            logger.warning("Flush delegate raised; flushing anyway", exc_info=True)
            return True
        if not allowed:
            logger.debug("Flush deferred by delegate")
        return allowed

    # ── Periodic timer ────────────────────────────────────────────

    @property
    def flush_interval(self) -> float:
        return self._interval

    @flush_interval.setter
    def flush_interval(self, value: float) -> None:
        """Change the interval; a running timer is rescheduled."""
        self._interval = max(0.0, float(value))
        with self._lock:
            running = self._running
        if running:
            self.stop()
            self.start()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the periodic timer (idempotent). An interval of 0 disables it."""
        with self._lock:
            if self._running:
                return
            if self._interval <= 0:
                logger.debug("Periodic flushing disabled (interval=0)")
                return
            self._running = True
            self._generation += 1
            self._schedule_locked()
        logger.debug("Flush timer started (interval=%ss)", self._interval)

    def stop(self) -> None:
        """Cancel the periodic timer (idempotent)."""
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule_locked(self) -> None:
        self._timer = threading.Timer(self._interval, self._on_timer, args=(self._generation,))
        self._timer.daemon = True  # Don't block interpreter exit
        self._timer.start()

    def _on_timer(self, generation: int) -> None:
        """Timer callback: request a flush, then reschedule.

        A callback from before the latest stop()/start() is stale and
        neither dispatches nor reschedules.
        """
        with self._lock:
            if not self._running or generation != self._generation:
                return
        try:
            self._dispatch(FlushTrigger.PERIODIC)
        except Exception:
            logger.exception("Periodic flush dispatch failed")
        with self._lock:
            if self._running and generation == self._generation:
                self._schedule_locked()

    # ── Triggers ──────────────────────────────────────────────────

    def request_flush(self, trigger: FlushTrigger = FlushTrigger.MANUAL) -> None:
        self._dispatch(trigger)

    def handle_lifecycle(self, signal: LifecycleSignal) -> None:
        """React to an application lifecycle transition."""
        if signal is LifecycleSignal.ENTERED_BACKGROUND:
            self.stop()
            if self.flush_on_background:
                self._dispatch(FlushTrigger.BACKGROUND)
        elif signal is LifecycleSignal.ENTERED_FOREGROUND:
            self.stop()
            self.start()
        elif signal is LifecycleSignal.WILL_TERMINATE:
            self.stop()
