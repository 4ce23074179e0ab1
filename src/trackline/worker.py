"""Single-threaded work queue serializing a tracker's state mutations."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialWorkQueue:
    """Runs submitted callables one at a time, in submission order.

    Exceptions raised by fire-and-forget tasks are logged rather than lost;
    ``call()`` re-raises them to the waiting caller.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._thread_ident: Optional[int] = None
        self._closed = False
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"trackline-{name}",
            initializer=self._bind_thread,
        )

    def _bind_thread(self) -> None:
        self._thread_ident = threading.get_ident()

    @property
    def on_worker_thread(self) -> bool:
        return self._thread_ident == threading.get_ident()

    def _run_logged(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.exception("Task %s failed on %s worker", getattr(fn, "__name__", fn), self.name)
            return None

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Future]:
        """Queue *fn* for execution. Returns None once the queue is shut down."""
        with self._lock:
            if self._closed:
                logger.debug("%s worker is shut down; dropping task %s", self.name, fn)
                return None
            try:
                return self._executor.submit(self._run_logged, fn, *args, **kwargs)
            except RuntimeError:
                # Interpreter shutdown: executors refuse new work
                logger.debug("%s worker no longer accepts tasks; dropping %s", self.name, fn)
                return None

    def call(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
        """Run *fn* on the worker and wait for its result.

        Runs inline when already on the worker thread, after shutdown, or
        once the interpreter is exiting, so callers cannot deadlock.
        """
        if self.on_worker_thread:
            return fn(*args)
        with self._lock:
            future: Optional[Future] = None
            if not self._closed:
                try:
                    future = self._executor.submit(fn, *args)
                except RuntimeError:
                    future = None
        if future is None:
            return fn(*args)
        return future.result(timeout=timeout)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every task submitted so far has run."""
        if self.on_worker_thread:
            return True
        future = self.submit(lambda: None)
        if future is None:
            return True
        try:
            future.result(timeout=timeout)
        except TimeoutError:
            return False
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait and not self.on_worker_thread)

    @property
    def closed(self) -> bool:
        return self._closed
