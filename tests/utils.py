"""Test doubles and helpers shared across the trackline tests."""

from __future__ import annotations

import itertools
import json
from typing import Any

from trackline.context import DeviceContext
from trackline.tracker import Tracker
from trackline.transport import AckInfo

TOKEN = "test-token"
START = 1_700_000_000.0


class FakeTransport:
    """Transport double recording every submission.

    Responses are scripted with ``respond_with``: an ``AckInfo`` is
    returned, an exception is raised. Unscripted calls succeed.
    """

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self._responses: list[Any] = []

    def respond_with(self, *outcomes: Any) -> None:
        self._responses.extend(outcomes)

    def submit(self, endpoint_url: str, payload: bytes) -> AckInfo:
        self.requests.append((endpoint_url, json.loads(payload)))
        if self._responses:
            outcome = self._responses.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return AckInfo(status_code=200)

    @property
    def batches(self) -> list[list[dict[str, Any]]]:
        return [body["events"] for _, body in self.requests]

    @property
    def delivered_names(self) -> list[str]:
        return [event.get("event") for batch in self.batches for event in batch]


class SequenceIdentifierProvider:
    """Deterministic default ids: device-1, device-2, ..."""

    def __init__(self, prefix: str = "device") -> None:
        self.prefix = prefix
        self._counter = itertools.count(1)

    def default_identifier(self) -> str:
        return f"{self.prefix}-{next(self._counter)}"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


TEST_CONTEXT = DeviceContext(
    os_name="TestOS",
    os_version="1.0",
    model="x86_64",
    runtime_version="3.12.0",
)


def queued_events(tracker: Tracker) -> list[Any]:
    """Events currently held in the tracker's queue, oldest first."""
    tracker.join()
    return [entry.event for entry in tracker._queue.entries()]
