"""The tracker: public client surface tying the components together.

Every mutation is marshaled onto the tracker's serial work queue and the
call returns immediately. Validation failures are logged and the call
becomes a no-op; nothing on the tracking path raises into the host
application.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from . import __version__
from .config import TrackerConfig, load_config
from .context import DeviceContext
from .delivery import CycleResult, DeliveryEngine
from .errors import PersistenceError, PropertyValidationError
from .identity import UNSET, IdentifierProvider, IdentityStore
from .lifecycle import LifecycleNotifier, LifecycleSignal, default_notifier
from .models import Event, QueueEntry
from .persistence import DurableStore, FileStore, PersistenceManager, snapshot_path_for
from .push import CAMPAIGN_RECEIVED_EVENT, parse_push_payload, push_payload_from_launch_options
from .queue import EventQueue, QueueStats
from .scheduler import FlushScheduler, FlushTrigger
from .timers import TimerRegistry
from .transport import RequestsTransport, Transport, endpoint_for, normalize_server_url
from .values import to_wire, validate_properties
from .worker import SerialWorkQueue

logger = logging.getLogger(__name__)

ALIAS_EVENT = "$create_alias"

# How long a terminating process waits for the final snapshot
TERMINATE_ARCHIVE_TIMEOUT = 5.0


def _valid_name(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


class Tracker:
    """Analytics client for one project token.

    Example:
        >>> tracker = Tracker("project-token")
        >>> tracker.identify("user-42")
        >>> tracker.track("Signup", {"plan": "pro"})
        >>> tracker.flush()

    Args:
        token: Project token attached to every event.
        server_url: Ingestion server; overrides the configured one.
        name: Registry name. Defaults to the token.
        launch_options: Launch context; a ``"remote_notification"`` entry
            is tracked as a received push campaign.
        flush_interval: Seconds between periodic flushes (0 disables).
        config: Base configuration. Loaded from the config file when omitted.
        transport: Network transport. Defaults to ``RequestsTransport``.
        store: Durable snapshot store. Defaults to a per-token file under
            the trackline home directory.
        identifier_provider: Source of the default distinct id.
        lifecycle: Notifier to subscribe to for lifecycle signals.
        delegate: Optional object whose ``should_flush()`` gates uploads.
        network_activity: Hook called with True/False around submissions.
        context: Device context. Detected from the platform when omitted.
        clock: Wall clock for event times, timers and snapshots.
        monotonic: Monotonic clock for the backoff window.
        start_timer: Start the periodic flush timer immediately.
        **options: Any other ``TrackerConfig`` field.
    """

    def __init__(
        self,
        token: str,
        server_url: Optional[str] = None,
        *,
        name: Optional[str] = None,
        launch_options: Optional[Mapping[str, Any]] = None,
        flush_interval: Optional[float] = None,
        config: Optional[TrackerConfig] = None,
        transport: Optional[Transport] = None,
        store: Optional[DurableStore] = None,
        identifier_provider: Optional[IdentifierProvider] = None,
        lifecycle: Optional[LifecycleNotifier] = None,
        delegate: Any = None,
        network_activity: Optional[Callable[[bool], None]] = None,
        context: Optional[DeviceContext] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        start_timer: bool = True,
        **options: Any,
    ) -> None:
        if not _valid_name(token):
            raise ValueError("Tracker token must be a non-empty string")

        self._token = token
        self._name = name or token
        self._clock = clock
        self._closed = False

        base = config if config is not None else load_config()
        self.config = base.with_overrides(
            server_url=server_url, flush_interval=flush_interval, **options
        )

        self._worker = SerialWorkQueue(self._name)
        self._network = SerialWorkQueue(f"{self._name}-network")

        self._identity = IdentityStore(identifier_provider)
        self._timers = TimerRegistry(clock)
        self._queue = EventQueue(self.config.max_queue_size, clock)
        self._context = context or DeviceContext.detect(
            self.config.app_version, self.config.app_release
        )
        self._default_properties = self._context.default_properties()

        self._transport = transport or RequestsTransport(timeout=self.config.request_timeout)
        self._persistence = PersistenceManager(
            store if store is not None else FileStore(snapshot_path_for(token)),
            token,
            clock,
        )
        self._server_url = normalize_server_url(self.config.server_url)

        self._engine = DeliveryEngine(
            self._queue,
            self._transport,
            endpoint=lambda: endpoint_for(self._server_url),
            batch_size=self.config.batch_size,
            backoff_base_seconds=self.config.backoff_base_seconds,
            backoff_max_seconds=self.config.backoff_max_seconds,
            clock=monotonic,
            launch=self._network.submit,
            post=self._worker.submit,
            on_cycle_complete=self._on_cycle_complete,
            network_activity=network_activity,
            show_network_activity_indicator=self.config.show_network_activity_indicator,
        )
        self._scheduler = FlushScheduler(
            self._dispatch_flush,
            flush_interval=self.config.flush_interval,
            flush_on_background=self.config.flush_on_background,
        )
        self._scheduler.delegate = delegate

        # Nothing else touches the stores yet, so restore inline
        restored = self._persistence.restore()
        if restored is not None:
            restored.apply(self._identity, self._timers, self._queue)
            logger.debug(
                "Restored %d queued event(s) for %s", len(self._queue), self._name
            )

        self._lifecycle = lifecycle if lifecycle is not None else default_notifier
        self._unsubscribe: Optional[Callable[[], None]] = self._lifecycle.subscribe(
            self._on_lifecycle
        )

        payload = push_payload_from_launch_options(launch_options)
        if payload is not None:
            self.track_push_notification(payload)

        if start_timer:
            self._scheduler.start()

    def __repr__(self) -> str:
        return f"Tracker(name={self._name!r}, server_url={self._server_url!r})"

    def __enter__(self) -> Tracker:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _submit(self, fn: Callable[..., Any], *args: Any) -> None:
        self._worker.submit(fn, *args)

    # ── Identity ──────────────────────────────────────────────────

    @property
    def token(self) -> str:
        return self._token

    @property
    def name(self) -> str:
        return self._name

    @property
    def distinct_id(self) -> str:
        return self._worker.call(lambda: self._identity.distinct_id)

    @property
    def name_tag(self) -> Optional[str]:
        return self._worker.call(lambda: self._identity.name_tag)

    @name_tag.setter
    def name_tag(self, value: Optional[str]) -> None:
        if value is not None and not isinstance(value, str):
            logger.warning("Ignoring name tag of type %s", type(value).__name__)
            return
        self._submit(setattr, self._identity, "name_tag", value or None)

    def identify(self, distinct_id: str) -> None:
        """Use *distinct_id* for events tracked from now on.

        Events already queued keep the id they were tracked with.
        """
        if not _valid_name(distinct_id):
            logger.warning("identify() called with an empty distinct id; ignoring")
            return
        self._submit(self._identity.identify, distinct_id)

    def create_alias(self, alias: str, for_distinct_id: str) -> None:
        """Link *alias* to an existing distinct id on the server."""
        if not _valid_name(alias) or not _valid_name(for_distinct_id):
            logger.warning("create_alias() needs a non-empty alias and distinct id; ignoring")
            return
        self.track(ALIAS_EVENT, {"alias": alias, "distinct_id": for_distinct_id})

    def reset(self) -> None:
        """Forget identity, super properties, timers and queued events."""
        self._submit(self._reset)

    def _reset(self) -> None:
        self._identity.reset()
        self._timers.clear()
        self._queue.clear()
        logger.debug("Tracker %s reset; new distinct id %s", self._name, self._identity.distinct_id)
        self._archive_quietly()

    # ── Super properties ──────────────────────────────────────────

    def register_super_properties(self, properties: Mapping[str, Any]) -> None:
        validated = self._validated(properties, "super properties")
        if validated is not None:
            self._submit(self._identity.register_super_properties, validated)

    def register_super_properties_once(
        self,
        properties: Mapping[str, Any],
        default_value: Any = UNSET,
    ) -> None:
        """Register only keys that are unset, or still hold *default_value*."""
        validated = self._validated(properties, "super properties")
        if validated is not None:
            self._submit(self._identity.register_super_properties_once, validated, default_value)

    def unregister_super_property(self, name: str) -> None:
        self._submit(self._identity.unregister_super_property, name)

    def clear_super_properties(self) -> None:
        self._submit(self._identity.clear_super_properties)

    def current_super_properties(self) -> dict[str, Any]:
        return self._worker.call(self._identity.current_super_properties)

    # ── Timed events ──────────────────────────────────────────────

    def time_event(self, event: str) -> None:
        """Start timing *event*; the next ``track(event)`` gets a ``$duration``."""
        if not _valid_name(event):
            logger.warning("time_event() called with an empty event name; ignoring")
            return
        self._submit(self._timers.time_event, event, self._clock())

    def clear_timed_events(self) -> None:
        self._submit(self._timers.clear)

    # ── Tracking ──────────────────────────────────────────────────

    def track(
        self,
        event: str,
        properties: Optional[Mapping[str, Any]] = None,
        *,
        custom_event: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Queue *event* with *properties* for delivery.

        ``custom_event`` supplies extra top-level keys for the wire payload;
        a ``"properties"`` mapping inside it is merged under *properties*.
        """
        now = self._clock()
        if not _valid_name(event):
            logger.warning("track() called with an empty event name; ignoring")
            return
        validated = self._validated(properties, f"properties of {event!r}")
        if validated is None:
            return
        body: dict[str, Any] = {}
        if custom_event is not None:
            body = self._validated(custom_event, f"custom body of {event!r}")
            if body is None:
                return
        self._submit(self._record, event, validated, body, now)

    def track_custom_event(self, custom_event: Mapping[str, Any]) -> None:
        """Queue a raw custom-shaped event.

        An ``"event"`` string inside it is treated as the event name (and
        completes a matching timer); the remaining keys are sent as-is.
        """
        now = self._clock()
        body = self._validated(custom_event, "custom event")
        if body is None:
            return
        name = body.pop("event", None)
        if name is not None and not _valid_name(name):
            logger.warning("Custom event carries an invalid event name %r; ignoring", name)
            return
        self._submit(self._record, name, {}, body, now)

    def track_push_notification(self, payload: Any) -> None:
        """Track a received push campaign. Unrecognized payloads are ignored."""
        campaign = parse_push_payload(payload)
        if campaign is not None:
            self.track(CAMPAIGN_RECEIVED_EVENT, campaign.to_properties())

    def _validated(
        self, properties: Optional[Mapping[str, Any]], what: str
    ) -> Optional[dict[str, Any]]:
        if properties is not None and not isinstance(properties, Mapping):
            logger.warning("Ignoring %s: expected a mapping, got %s", what, type(properties).__name__)
            return None
        try:
            return validate_properties(properties)
        except PropertyValidationError as exc:
            logger.warning("Ignoring %s: %s", what, exc)
            return None

    def _record(
        self,
        name: Optional[str],
        properties: dict[str, Any],
        body: dict[str, Any],
        now: float,
    ) -> None:
        """Build the event from the current identity and enqueue it."""
        nested = body.pop("properties", None)
        if isinstance(nested, Mapping):
            properties = {**nested, **properties}

        merged = dict(self._default_properties)
        merged["token"] = self._token
        merged["time"] = int(now)
        merged["distinct_id"] = self._identity.distinct_id
        if self._identity.name_tag:
            merged["name_tag"] = self._identity.name_tag
        if name is not None:
            duration = self._timers.consume(name, now)
            if duration is not None:
                merged["$duration"] = round(duration, 3)
        merged.update(self._identity.current_super_properties())
        merged.update(properties)

        event = Event(
            name=name,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
            properties=to_wire(merged),
            body=to_wire(body),
        )
        self._queue.enqueue(QueueEntry(event=event, enqueued_at=now))
        logger.debug("Queued %r (%d pending)", name, len(self._queue))

    # ── Flushing ──────────────────────────────────────────────────

    def flush(self) -> None:
        """Upload queued events now, skipping any backoff window.

        Fire-and-forget; use ``join()`` to wait for the outcome.
        """
        self._scheduler.request_flush(FlushTrigger.MANUAL)

    def _dispatch_flush(self, trigger: FlushTrigger) -> None:
        self._submit(self._flush, trigger)

    def _flush(self, trigger: FlushTrigger) -> None:
        if not self._scheduler.permits_flush():
            return
        logger.debug("Flush requested (%s)", trigger.value)
        self._engine.start_cycle(force=trigger is FlushTrigger.MANUAL)

    def _on_cycle_complete(self, result: CycleResult) -> None:
        if result.resolved:
            self._archive_quietly()

    def join(self, timeout: float = 10.0) -> bool:
        """Wait until queued work has run and no delivery is in progress.

        Returns:
            True if the tracker went idle within *timeout* seconds.
        """
        if self._closed:
            return self._engine.state == "idle"
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                idle = self._worker.call(lambda: self._engine.state == "idle", timeout=remaining)
            except TimeoutError:
                return False
            if idle:
                return True
            if not self._network.drain(timeout=max(0.0, deadline - time.monotonic())):
                return False

    @property
    def delivery(self) -> DeliveryEngine:
        """The delivery engine, for status reporting."""
        return self._engine

    # ── Persistence ───────────────────────────────────────────────

    def archive(self) -> None:
        """Write a snapshot of the current state, waiting for the write."""
        self._worker.call(self._archive_quietly)

    def _archive_quietly(self) -> None:
        try:
            self._persistence.archive(self._identity, self._timers, self._queue)
        except PersistenceError as exc:
            logger.warning("Could not archive tracker %s: %s", self._name, exc)

    # ── Lifecycle ─────────────────────────────────────────────────

    def _on_lifecycle(self, signal: LifecycleSignal) -> None:
        self._scheduler.handle_lifecycle(signal)
        if signal is LifecycleSignal.ENTERED_BACKGROUND:
            self._submit(self._archive_quietly)
        elif signal is LifecycleSignal.WILL_TERMINATE:
            try:
                self._worker.call(self._archive_quietly, timeout=TERMINATE_ARCHIVE_TIMEOUT)
            except TimeoutError:
                logger.warning("Timed out archiving %s before termination", self._name)

    def close(self) -> None:
        """Stop timers, archive and release worker threads. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._scheduler.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        # Let an in-flight submission finish so its outcome is recorded
        self._network.shutdown(wait=True)
        self._worker.call(self._archive_quietly)
        self._worker.shutdown(wait=True)
        close_transport = getattr(self._transport, "close", None)
        if callable(close_transport):
            close_transport()
        logger.debug("Tracker %s closed", self._name)

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Configuration ─────────────────────────────────────────────

    @property
    def server_url(self) -> str:
        return self._server_url

    @server_url.setter
    def server_url(self, value: str) -> None:
        if not _valid_name(value):
            logger.warning("Ignoring empty server URL")
            return
        self._server_url = normalize_server_url(value)

    @property
    def flush_interval(self) -> float:
        return self._scheduler.flush_interval

    @flush_interval.setter
    def flush_interval(self, value: float) -> None:
        self._scheduler.flush_interval = value

    @property
    def flush_on_background(self) -> bool:
        return self._scheduler.flush_on_background

    @flush_on_background.setter
    def flush_on_background(self, value: bool) -> None:
        self._scheduler.flush_on_background = bool(value)

    @property
    def show_network_activity_indicator(self) -> bool:
        return self._engine.show_network_activity_indicator

    @show_network_activity_indicator.setter
    def show_network_activity_indicator(self, value: bool) -> None:
        self._engine.show_network_activity_indicator = bool(value)

    @property
    def delegate(self) -> Any:
        return self._scheduler.delegate

    @delegate.setter
    def delegate(self, value: Any) -> None:
        self._scheduler.delegate = value

    # ── Introspection ─────────────────────────────────────────────

    def queue_size(self) -> int:
        return self._worker.call(self._queue.size)

    def queue_stats(self) -> QueueStats:
        return self._worker.call(self._queue.stats)

    @staticmethod
    def lib_version() -> str:
        return __version__
