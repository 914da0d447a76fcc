"""In-process event bus.

Every component publishes its transitions here, and observers (CLI verbose
mode, dashboards, tests) subscribe instead of polling. Delivery is synchronous
and in registration order: handlers for the exact event type first, then
wildcard (``"*"``) handlers. A handler that raises is logged and counted, and
delivery continues with the next handler.

Example:
    bus = EventBus()
    unsubscribe = bus.subscribe("seed.planted", on_seed)
    bus.publish("seed", "seed.planted", {"id": "s1"})
    unsubscribe()
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from emailos.config import BUS_MAX_HISTORY
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)

WILDCARD = "*"


@dataclass(frozen=True)
class BusEvent:
    """One published event."""

    id: int
    source: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


Handler = Callable[[BusEvent], None]


class EventBus:
    """Synchronous publish/subscribe with a bounded history."""

    def __init__(self, max_history: int = BUS_MAX_HISTORY, clock: Clock = utcnow) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: deque[BusEvent] = deque(maxlen=max_history)
        self._counter = 0
        self._clock = clock

    def publish(self, source: str, event_type: str, payload: dict[str, Any] | None = None) -> BusEvent:
        """
        Record an event and deliver it to subscribers.

        Side Effects:
            - Appends to the bounded history (oldest events are dropped)
            - Invokes every matching handler
            - Increments ``bus.handler_error`` for each handler that raises
        """
        self._counter += 1
        event = BusEvent(
            id=self._counter,
            source=source,
            event_type=event_type,
            payload=payload or {},
            timestamp=self._clock(),
        )
        self._history.append(event)

        handlers = [*self._handlers.get(event_type, []), *self._handlers.get(WILDCARD, [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error("Bus handler error [%s]: %s", event_type, e, exc_info=True)
                counter("bus.handler_error")

        return event

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """
        Register ``handler`` for ``event_type`` (or ``"*"`` for everything).

        Returns:
            A callable that removes this registration
        """
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def recent(
        self,
        source: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[BusEvent]:
        """Most recent events (oldest first), optionally filtered."""
        events = [
            e
            for e in self._history
            if (source is None or e.source == source)
            and (event_type is None or e.event_type == event_type)
        ]
        return events[-limit:] if limit > 0 else []

    def stats(self) -> dict[str, Any]:
        return {
            "total_events": len(self._history),
            "subscriber_count": sum(len(h) for h in self._handlers.values()),
            "sources": sorted({e.source for e in self._history}),
        }

    def clear(self) -> None:
        """Drop history and reset event ids. Subscriptions are kept."""
        self._history.clear()
        self._counter = 0
