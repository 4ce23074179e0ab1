"""Application lifecycle signals.

Host applications (or platform glue) emit these on a ``LifecycleNotifier``;
trackers subscribe to flush and persist at the right moments.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class LifecycleSignal(str, Enum):
    ENTERED_BACKGROUND = "entered_background"
    ENTERED_FOREGROUND = "entered_foreground"
    WILL_TERMINATE = "will_terminate"


LifecycleCallback = Callable[[LifecycleSignal], None]


class LifecycleNotifier:
    """Fans lifecycle signals out to subscribers.

    A failing subscriber is logged and does not stop delivery to the
    others.
    """

    def __init__(self) -> None:
        self._subscribers: list[LifecycleCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: LifecycleCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, signal: LifecycleSignal) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug("Lifecycle signal %s -> %d subscriber(s)", signal.value, len(subscribers))
        for callback in subscribers:
            try:
                callback(signal)
            except Exception:
                logger.exception("Lifecycle subscriber failed for %s", signal.value)

    def entered_background(self) -> None:
        self.emit(LifecycleSignal.ENTERED_BACKGROUND)

    def entered_foreground(self) -> None:
        self.emit(LifecycleSignal.ENTERED_FOREGROUND)

    def will_terminate(self) -> None:
        self.emit(LifecycleSignal.WILL_TERMINATE)


# Process-wide notifier used by trackers that are not given their own
default_notifier = LifecycleNotifier()
