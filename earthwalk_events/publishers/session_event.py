"""
Session Event Publisher
=======================

Bounded Context: Session Event Message Production

Forwards domain events from a session's EventBus to MQTT.

Message Flow:
    ExplorationSession / ClaimSession → EventBus → SessionEventPublisher → MQTT Broker

Topic:
    The topic may contain a `{session_id}` placeholder, resolved per event
    (default: earthwalk/events/{session_id}).

Example:
    >>> publisher = SessionEventPublisher(broker_host="localhost", logger=create_logger("publisher"))
    >>> publisher.connect()
    >>> publisher.attach(session.bus)
"""

from typing import Any, Callable, Dict, Optional

from .base import BasePublisher
from ..bus import EventBus
from ..schemas import DomainEvent
from ..logging import StructuredLogger, LogEvent


class SessionEventPublisher(BasePublisher):
    """
    Publisher for session domain events.

    Attributes:
        Same as BasePublisher, plus:
        schema_version: Schema version stamped on every message
    """

    def __init__(
        self,
        broker_host: str,
        logger: StructuredLogger,
        topic: str = "earthwalk/events/{session_id}",
        broker_port: int = 1883,
        client_id: str = "earthwalk_event_publisher",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        super().__init__(
            broker_host=broker_host,
            broker_port=broker_port,
            topic=topic,
            client_id=client_id,
            logger=logger,
            username=username,
            password=password,
            qos=qos
        )
        self.schema_version = "1.0"
        self._detach: Optional[Callable[[], None]] = None

    def topic_for(self, event: DomainEvent) -> str:
        """Resolve the topic template for one event."""
        return self.topic.format(session_id=event.session_id)

    def format_message(self, event: DomainEvent) -> Dict[str, Any]:
        """
        Format a domain event as a JSON-compatible dict.

        Raises:
            ValueError: If the event cannot be serialized
        """
        try:
            formatted = event.to_dict()
        except (TypeError, AttributeError) as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message="Failed to serialize session event",
                exc_info=e,
                metadata={'event_class': type(event).__name__}
            )
            raise ValueError(f"Failed to format session event: {e}") from e

        formatted['schema_version'] = self.schema_version
        return formatted

    def publish_event(self, event: DomainEvent) -> bool:
        """
        Publish one domain event.

        Returns:
            True if published, False otherwise (never raises)
        """
        try:
            message_data = self.format_message(event)
        except ValueError:
            return False
        return self.publish(message_data, topic=self.topic_for(event))

    def attach(self, bus: EventBus) -> None:
        """Forward every event published on bus."""
        self.detach()
        self._detach = bus.subscribe(None, self.publish_event)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None
