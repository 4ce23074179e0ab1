"""Shared fixtures for trackline tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator

import pytest

from trackline import registry
from trackline.config import HOME_ENV_VAR, SERVER_URL_ENV_VAR, TrackerConfig
from trackline.lifecycle import LifecycleNotifier
from trackline.persistence import MemoryStore
from trackline.tracker import Tracker

from tests.utils import TEST_CONTEXT, TOKEN, FakeClock, FakeTransport, SequenceIdentifierProvider


@pytest.fixture(autouse=True)
def trackline_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Keep every test away from ~/.trackline and the real environment."""
    home = tmp_path / "trackline-home"
    monkeypatch.setenv(HOME_ENV_VAR, str(home))
    monkeypatch.delenv(SERVER_URL_ENV_VAR, raising=False)
    yield home
    registry.reset_registry()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def notifier() -> LifecycleNotifier:
    return LifecycleNotifier()


@pytest.fixture
def make_tracker(
    transport: FakeTransport,
    store: MemoryStore,
    clock: FakeClock,
    monotonic: FakeClock,
    notifier: LifecycleNotifier,
) -> Iterator[Any]:
    """Factory building trackers wired to fakes; all are closed afterwards."""
    created: list[Tracker] = []

    def _make(token: str = TOKEN, **overrides: Any) -> Tracker:
        options: dict[str, Any] = {
            "config": TrackerConfig(),
            "transport": transport,
            "store": store,
            "identifier_provider": SequenceIdentifierProvider(),
            "lifecycle": notifier,
            "context": TEST_CONTEXT,
            "clock": clock,
            "monotonic": monotonic,
            "start_timer": False,
        }
        options.update(overrides)
        tracker = Tracker(token, **options)
        created.append(tracker)
        return tracker

    yield _make
    for tracker in created:
        tracker.close()


@pytest.fixture
def tracker(make_tracker: Any) -> Tracker:
    return make_tracker()
