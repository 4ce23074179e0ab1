"""Tests for the serial work queue."""

from __future__ import annotations

import threading

import pytest

from trackline.worker import SerialWorkQueue


@pytest.fixture
def worker():
    queue = SerialWorkQueue("test")
    yield queue
    queue.shutdown()


def test_tasks_run_in_submission_order(worker):
    seen = []
    for i in range(50):
        worker.submit(seen.append, i)
    assert worker.drain(timeout=5.0)
    assert seen == list(range(50))


def test_tasks_run_on_a_single_thread(worker):
    threads = set()
    for _ in range(10):
        worker.submit(lambda: threads.add(threading.get_ident()))
    worker.drain(timeout=5.0)
    assert len(threads) == 1
    assert threading.get_ident() not in threads


def test_call_returns_result(worker):
    assert worker.call(lambda a, b: a + b, 2, 3) == 5


def test_call_propagates_exceptions(worker):
    def boom():
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        worker.call(boom)


def test_failing_task_is_logged_not_raised(worker, caplog):
    def boom():
        raise RuntimeError("exploded")

    worker.submit(boom)
    worker.drain(timeout=5.0)

    assert "boom" in caplog.text
    assert worker.call(lambda: "still alive") == "still alive"


def test_call_from_worker_thread_runs_inline(worker):
    result = worker.call(lambda: worker.call(lambda: "nested"), timeout=5.0)
    assert result == "nested"


def test_submit_after_shutdown_is_dropped():
    queue = SerialWorkQueue("closed")
    queue.shutdown()
    assert queue.closed
    assert queue.submit(lambda: None) is None
    assert queue.call(lambda: "inline") == "inline"
    assert queue.drain() is True


def test_refused_executor_drops_submit_and_runs_call_inline(worker, monkeypatch):
    def refuse(*args, **kwargs):
        raise RuntimeError("cannot schedule new futures after interpreter shutdown")

    monkeypatch.setattr(worker._executor, "submit", refuse)

    assert worker.submit(lambda: None) is None
    assert worker.call(lambda: threading.get_ident()) == threading.get_ident()
