"""
MQTT Publishers
===============

Bounded Context: Event transport to the broker

    BasePublisher: Abstract base (connection lifecycle, publish, stats)
    SessionEventPublisher: Forwards EventBus domain events to MQTT
"""

from .base import BasePublisher
from .session_event import SessionEventPublisher

__all__ = [
    'BasePublisher',
    'SessionEventPublisher',
]
