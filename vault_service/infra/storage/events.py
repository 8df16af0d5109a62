"""Storage event bus and its built-in handlers.

``EventBus.emit`` is synchronous and never raises: each event is appended to
a bounded log of recent events and then handed to every registered handler
in registration order. A failing handler is logged and skipped so metrics
collection can never break an upload.

Handlers shipped here:
- ``MetricsAggregator``: folds events into ``StorageMetrics`` under a lock
- ``prometheus_event_handler``: mirrors events into Prometheus counters
- ``log_event``: structured log line per event
"""

from __future__ import annotations

from collections import deque
import logging
import threading
from typing import TYPE_CHECKING

from .metrics import storage_cost_estimate_usd, storage_events_total
from .models import StorageEventType, StorageMetrics

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .models import StorageEvent

    EventHandler = Callable[[StorageEvent], None]

logger = logging.getLogger(__name__)


class EventBus:
    """Synchronous fan-out of storage events to registered handlers.

    Example:
        bus = EventBus(log_size=100)
        aggregator = MetricsAggregator()
        bus.subscribe(aggregator)
        bus.emit(StorageEvent(type=StorageEventType.UPLOAD, ...))
        aggregator.snapshot().operations_count  # 1
    """

    def __init__(self, *, log_size: int = 1000) -> None:
        self._handlers: list[EventHandler] = []
        self._log: deque[StorageEvent] = deque(maxlen=log_size)
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unregisters it."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: StorageEvent) -> None:
        try:
            with self._lock:
                self._log.append(event)
                handlers = tuple(self._handlers)
        except Exception:
            logger.exception("Failed to record storage event", extra={"event_id": event.id})
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Storage event handler failed",
                    extra={
                        "event_id": event.id,
                        "event_type": event.type.value,
                        "handler": getattr(handler, "__name__", type(handler).__name__),
                    },
                )

    def recent_events(
        self,
        limit: int | None = None,
        *,
        event_type: StorageEventType | None = None,
        object_id: str | None = None,
    ) -> list[StorageEvent]:
        """Most recent events, oldest first."""
        with self._lock:
            events = list(self._log)
        if event_type is not None:
            events = [e for e in events if e.type is event_type]
        if object_id is not None:
            events = [e for e in events if e.object_id == object_id]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events


class MetricsAggregator:
    """Running aggregates derived from the event stream.

    Every event counts as one operation. ``error_rate`` is the incremental
    mean of error (1) versus non-error (0) events; ``average_latency`` is the
    incremental mean over events that carry a duration.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_objects = 0
        self._total_size = 0
        self._operations = 0
        self._timed_operations = 0
        self._average_latency = 0.0
        self._error_rate = 0.0
        self._cost_estimate = 0.0
        self._last_backup: datetime | None = None
        self._last_replication: datetime | None = None

    def __call__(self, event: StorageEvent) -> None:
        with self._lock:
            self._operations += 1
            is_error = 1.0 if event.type is StorageEventType.ERROR else 0.0
            self._error_rate += (is_error - self._error_rate) / self._operations

            if event.duration is not None:
                self._timed_operations += 1
                self._average_latency += (
                    event.duration - self._average_latency
                ) / self._timed_operations

            match event.type:
                case StorageEventType.UPLOAD:
                    self._total_objects += 1
                    self._total_size += event.size or 0
                    self._cost_estimate += float(event.metadata.get("cost", 0.0))
                case StorageEventType.BACKUP:
                    self._last_backup = event.timestamp
                case StorageEventType.REPLICATION:
                    self._last_replication = event.timestamp

    def snapshot(self) -> StorageMetrics:
        with self._lock:
            return StorageMetrics(
                total_objects=self._total_objects,
                total_size=self._total_size,
                operations_count=self._operations,
                average_latency=self._average_latency,
                error_rate=self._error_rate,
                cost_estimate=round(self._cost_estimate, 4),
                last_backup=self._last_backup,
                last_replication=self._last_replication,
            )


def prometheus_event_handler(event: StorageEvent) -> None:
    storage_events_total.labels(
        type=event.type.value,
        provider=event.provider,
        region=event.region,
    ).inc()
    if event.type is StorageEventType.UPLOAD:
        cost = float(event.metadata.get("cost", 0.0))
        if cost > 0:
            storage_cost_estimate_usd.labels(region=event.region).inc(cost)


def log_event(event: StorageEvent) -> None:
    level = logging.WARNING if event.type is StorageEventType.ERROR else logging.DEBUG
    if not logger.isEnabledFor(level):
        return
    logger.log(
        level,
        f"Storage event: {event.type.value}",
        extra={
            "event_id": event.id,
            "event_type": event.type.value,
            "object_id": event.object_id,
            "provider": event.provider,
            "region": event.region,
            "size": event.size,
            "duration_ms": event.duration,
            "error": event.error,
        },
    )
