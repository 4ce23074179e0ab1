"""Tests for the delivery engine state machine."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from trackline.delivery import DELIVERED, DROPPED, FAILED, DeliveryEngine, encode_batch
from trackline.errors import TransportError
from trackline.models import Event, QueueEntry
from trackline.queue import EventQueue

from tests.utils import FakeClock, FakeTransport

ENDPOINT = "https://inputs.example.com/track/"


def _fill(queue: EventQueue, *names: str) -> None:
    for name in names:
        event = Event(
            name=name,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            properties={"distinct_id": "u1"},
        )
        queue.enqueue(QueueEntry(event=event, enqueued_at=0.0))


@pytest.fixture
def queue() -> EventQueue:
    return EventQueue(max_size=100)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=0.0)


@pytest.fixture
def engine(queue, transport, clock) -> DeliveryEngine:
    return DeliveryEngine(
        queue,
        transport,
        endpoint=lambda: ENDPOINT,
        batch_size=2,
        backoff_base_seconds=60.0,
        backoff_max_seconds=600.0,
        clock=clock,
    )


class TestEncodeBatch:
    def test_wire_shape(self):
        queue = EventQueue()
        _fill(queue, "Signup")
        entry = queue.entries()[0]

        body = json.loads(encode_batch([entry]))

        assert body == {
            "events": [
                {
                    "event": "Signup",
                    "event_id": entry.entry_id,
                    "properties": {"distinct_id": "u1"},
                }
            ]
        }


class TestSuccessfulCycle:
    """Test delivery and acknowledgement."""

    def test_empty_queue_returns_to_idle(self, engine, transport):
        assert engine.start_cycle() is False
        assert engine.state == "idle"
        assert transport.requests == []

    def test_delivers_and_acknowledges(self, engine, queue, transport):
        _fill(queue, "a", "b")

        assert engine.start_cycle() is True

        assert transport.requests[0][0] == ENDPOINT
        assert transport.delivered_names == ["a", "b"]
        assert queue.size() == 0
        assert engine.state == "idle"
        assert engine.delivered_count == 2
        assert engine.last_result.outcome == DELIVERED
        assert engine.last_flush is not None

    def test_continues_until_queue_empty(self, engine, queue, transport):
        _fill(queue, "a", "b", "c", "d", "e")

        engine.start_cycle()

        assert [len(batch) for batch in transport.batches] == [2, 2, 1]
        assert transport.delivered_names == ["a", "b", "c", "d", "e"]
        assert queue.size() == 0

    def test_completion_callback_receives_result(self, queue, transport):
        results = []
        engine = DeliveryEngine(
            queue, transport, endpoint=lambda: ENDPOINT, on_cycle_complete=results.append
        )
        _fill(queue, "a")

        engine.start_cycle()

        assert [r.outcome for r in results] == [DELIVERED]
        assert results[0].resolved

    def test_failing_completion_callback_is_contained(self, queue, transport):
        callback = MagicMock(side_effect=RuntimeError("boom"))
        engine = DeliveryEngine(queue, transport, endpoint=lambda: ENDPOINT, on_cycle_complete=callback)
        _fill(queue, "a")

        engine.start_cycle()

        callback.assert_called_once()
        assert engine.state == "idle"


class TestFailedCycle:
    """Test requeue and exponential backoff."""

    def test_timeout_requeues_batch_in_order(self, engine, queue, transport):
        engine.batch_size = 3
        _fill(queue, "a", "b", "c")
        transport.respond_with(TransportError("Request timeout"))

        engine.start_cycle()
        _fill(queue, "d")

        assert engine.state == "idle"
        assert engine.last_result.outcome == FAILED
        assert [e.event.name for e in queue.entries()] == ["a", "b", "c", "d"]
        assert [e.attempts for e in queue.entries()] == [1, 1, 1, 0]

        engine.start_cycle(force=True)

        assert transport.batches[1] == transport.batches[0]
        assert transport.delivered_names[-1] == "d"

    def test_backoff_blocks_unforced_cycles(self, engine, queue, transport, clock):
        _fill(queue, "a")
        transport.respond_with(TransportError("Connection error"))
        engine.start_cycle()

        assert engine.in_backoff()
        assert engine.retry_in() == 60.0
        assert engine.start_cycle() is False
        assert len(transport.requests) == 1

        clock.advance(61)
        assert engine.start_cycle() is True
        assert engine.consecutive_failures == 0
        assert not engine.in_backoff()

    def test_manual_flush_bypasses_backoff(self, engine, queue, transport):
        _fill(queue, "a")
        transport.respond_with(TransportError("Connection error"))
        engine.start_cycle()

        assert engine.start_cycle(force=True) is True
        assert queue.size() == 0

    def test_backoff_doubles_up_to_max(self, engine, queue, transport):
        _fill(queue, "a")
        waits = []
        for _ in range(6):
            transport.respond_with(TransportError("HTTP 503", status_code=503))
            engine.start_cycle(force=True)
            waits.append(engine.backoff_seconds)
        assert waits == [60.0, 120.0, 240.0, 480.0, 600.0, 600.0]

    def test_unexpected_exception_is_retryable(self, engine, queue, transport):
        _fill(queue, "a")
        transport.respond_with(RuntimeError("socket exploded"))

        engine.start_cycle()

        assert engine.last_result.outcome == FAILED
        assert queue.entries()[0].attempts == 1


class TestPermanentRejection:
    def test_batch_is_dropped(self, engine, queue, transport):
        _fill(queue, "a", "b")
        transport.respond_with(TransportError("HTTP 400", status_code=400, retryable=False))

        engine.start_cycle()

        assert queue.size() == 0
        assert engine.dropped_count == 2
        assert engine.last_result.outcome == DROPPED
        assert engine.last_result.status_code == 400
        assert not engine.in_backoff()


class TestCoalescing:
    def test_request_during_send_is_coalesced(self, queue, transport):
        launched = []
        engine = DeliveryEngine(
            queue,
            transport,
            endpoint=lambda: ENDPOINT,
            launch=lambda fn, *args: launched.append((fn, args)),
        )
        _fill(queue, "a")

        assert engine.start_cycle() is True
        assert engine.state == "sending"
        assert engine.start_cycle(force=True) is False
        assert len(launched) == 1

        fn, args = launched[0]
        fn(*args)
        assert engine.state == "idle"
        assert queue.size() == 0


class TestNetworkActivity:
    def test_hook_toggles_around_submission(self, queue, transport):
        hook = MagicMock()
        engine = DeliveryEngine(queue, transport, endpoint=lambda: ENDPOINT, network_activity=hook)
        _fill(queue, "a")

        engine.start_cycle()

        assert [c.args[0] for c in hook.call_args_list] == [True, False]

    def test_hook_suppressed_when_indicator_disabled(self, queue, transport):
        hook = MagicMock()
        engine = DeliveryEngine(
            queue,
            transport,
            endpoint=lambda: ENDPOINT,
            network_activity=hook,
            show_network_activity_indicator=False,
        )
        _fill(queue, "a")

        engine.start_cycle()

        hook.assert_not_called()
