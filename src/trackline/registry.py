"""Process-wide table of named tracker instances.

Most applications use a single tracker: ``init()`` it once at startup and
fetch it anywhere with ``shared_instance()``. Several projects can be
tracked side by side by giving each tracker its own name.
"""

from __future__ import annotations

import atexit
import logging
import threading
from typing import Any, Optional

from .errors import UnknownInstanceError
from .tracker import Tracker

logger = logging.getLogger(__name__)

_instances: dict[str, Tracker] = {}
_shared: Optional[str] = None
_lock = threading.Lock()


def init(
    token: str,
    server_url: Optional[str] = None,
    *,
    name: Optional[str] = None,
    **options: Any,
) -> Tracker:
    """Create (or return the existing) tracker registered under *name*.

    *name* defaults to the token. The tracker becomes the shared instance.
    """
    global _shared
    key = name or token
    with _lock:
        tracker = _instances.get(key)
        if tracker is None:
            tracker = Tracker(token, server_url, name=key, **options)
            _instances[key] = tracker
            logger.debug("Registered tracker %s", key)
        _shared = key
    return tracker


def get_instance(name: str) -> Tracker:
    with _lock:
        try:
            return _instances[name]
        except KeyError:
            raise UnknownInstanceError(name) from None


def shared_instance() -> Tracker:
    """Return the most recently initialized tracker."""
    with _lock:
        if _shared is None or _shared not in _instances:
            raise UnknownInstanceError("<shared>")
        return _instances[_shared]


def remove_instance(name: str, close: bool = True) -> Tracker:
    """Unregister *name*, closing the tracker unless told otherwise."""
    global _shared
    with _lock:
        tracker = _instances.pop(name, None)
        if tracker is None:
            raise UnknownInstanceError(name)
        if _shared == name:
            _shared = next(reversed(_instances), None)
    if close:
        tracker.close()
    return tracker


def instance_names() -> list[str]:
    with _lock:
        return list(_instances)


def reset_registry(close: bool = True) -> None:
    """Forget every instance. Intended for tests."""
    global _shared
    with _lock:
        trackers = list(_instances.values())
        _instances.clear()
        _shared = None
    if close:
        for tracker in trackers:
            tracker.close()


def _shutdown_all() -> None:
    """Close (and thereby archive) every registered tracker at exit."""
    with _lock:
        trackers = list(_instances.values())
    for tracker in trackers:
        try:
            tracker.close()
        except Exception:
            logger.exception("Failed to close tracker %s at exit", tracker.name)


atexit.register(_shutdown_all)
