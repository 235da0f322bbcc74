"""
Session Event Bus
=================

Bounded Context: In-process event distribution

Typed publish/subscribe bus scoped to one session. The session state machine
publishes from its owning context; handlers run synchronously on that same
context, in subscription order.

Design:
- Subscriptions keyed by event class (None = every event)
- subscribe() returns an unsubscribe callable
- Handler list is snapshotted under a lock, dispatch happens outside it
- A failing handler is logged and does not affect other handlers or the
  publisher

Example:
    >>> bus = EventBus()
    >>> unsubscribe = bus.subscribe(POIEntered, lambda e: print(e.poi_name))
    >>> bus.publish(POIEntered(session_id="s1", poi_id="p1", poi_name="Pharmacy",
    ...                        latitude=48.85, longitude=2.35, distance_m=12.0))
    Pharmacy
"""

import threading
from typing import Callable, Dict, List, Optional, Type

from .logging import LogEvent, StructuredLogger, create_logger
from .schemas import DomainEvent

EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """
    Typed publish/subscribe bus.

    Thread Safety:
        subscribe/unsubscribe may be called from any thread. publish() is
        expected to be called from the session's owning context.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or create_logger("bus")
        self._handlers: Dict[Optional[Type[DomainEvent]], List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._published_count = 0

    def subscribe(
        self,
        event_cls: Optional[Type[DomainEvent]],
        handler: EventHandler
    ) -> Callable[[], None]:
        """
        Register a handler for one event class, or for all events (None).

        Returns:
            Callable that removes this subscription (idempotent)
        """
        with self._lock:
            self._handlers.setdefault(event_cls, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_cls, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: DomainEvent) -> int:
        """
        Deliver event to matching handlers.

        Returns:
            Number of handlers that ran without raising
        """
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
            handlers += self._handlers.get(None, [])
            self._published_count += 1

        self.logger.debug(
            event=LogEvent.EVENT_PUBLISHED,
            message=f"Publishing {event.event_type.value}",
            metadata={'session_id': event.session_id, 'handlers': len(handlers)}
        )

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                self.logger.error(
                    event=LogEvent.SUBSCRIBER_ERROR,
                    message="Event handler raised",
                    exc_info=e,
                    metadata={'event_type': event.event_type.value}
                )
        return delivered

    @property
    def published_count(self) -> int:
        with self._lock:
            return self._published_count


class EventRecorder:
    """
    Subscriber that keeps every event it sees, in order.

    Handy for replays and for asserting on emitted events.
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self.events: List[DomainEvent] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        if bus is not None:
            self.attach(bus)

    def attach(self, bus: EventBus) -> None:
        self._unsubscribe = bus.subscribe(None, self.events.append)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def of_type(self, event_cls: Type[DomainEvent]) -> List[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_cls)]

    def clear(self) -> None:
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)
