"""Named event timers for duration measurement."""

from __future__ import annotations

import time
from typing import Callable, Mapping, Optional


class TimerRegistry:
    """Start instants of timed events, keyed by event name.

    Instants come from a wall clock (seconds since the epoch) so pending
    timers survive a restart through the snapshot.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._started: dict[str, float] = {}

    def time_event(self, name: str, now: Optional[float] = None) -> None:
        """Start (or restart) the timer for *name*."""
        self._started[name] = self._clock() if now is None else now

    def consume(self, name: str, now: Optional[float] = None) -> Optional[float]:
        """Stop the timer for *name* and return the elapsed seconds.

        Returns ``None`` when no timer is running for *name*. Clock skew
        never yields a negative duration.
        """
        started = self._started.pop(name, None)
        if started is None:
            return None
        end = self._clock() if now is None else now
        return max(0.0, end - started)

    def clear(self) -> None:
        self._started.clear()

    def snapshot(self) -> dict[str, float]:
        return dict(self._started)

    def restore(self, started: Mapping[str, float]) -> None:
        self._started = {str(name): float(value) for name, value in started.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._started

    def __len__(self) -> int:
        return len(self._started)
