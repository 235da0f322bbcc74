"""
Earthwalk Events
================

Bounded Context: Domain events, their distribution and observability.

Architecture:

    earthwalk_events/
    ├── schemas/           # Typed domain events (frozen dataclasses)
    │   ├── common.py      # Timestamp
    │   └── domain.py      # SessionStateChanged, POIEntered, ...
    │
    ├── bus.py             # EventBus (in-process typed pub/sub)
    │
    ├── publishers/        # MQTT transport
    │   ├── base.py        # BasePublisher (paho-mqtt lifecycle)
    │   └── session_event.py
    │
    └── logging/           # Structured JSON logging
        ├── events.py      # LogEvent taxonomy
        └── structured.py  # StructuredLogger

Usage:

    from earthwalk_events import EventBus, SessionEventPublisher, create_logger

    bus = EventBus()
    publisher = SessionEventPublisher(broker_host="localhost",
                                      logger=create_logger("publisher"))
    if publisher.connect():
        publisher.attach(bus)
"""

__version__ = "1.0.0"

from .bus import EventBus, EventRecorder
from .logging import LogEvent, StructuredLogger, create_logger
from .publishers import BasePublisher, SessionEventPublisher
from .schemas import (
    DomainEvent,
    EventType,
    Timestamp,
    SessionStateChanged,
    ClosureDetected,
    SpeedViolationStarted,
    SpeedViolationEnded,
    CollisionWarningChanged,
    POIEntered,
    POIResolved,
    RewardTierChanged,
    SessionErrorRaised,
)

__all__ = [
    '__version__',
    'EventBus',
    'EventRecorder',
    'LogEvent',
    'StructuredLogger',
    'create_logger',
    'BasePublisher',
    'SessionEventPublisher',
    'DomainEvent',
    'EventType',
    'Timestamp',
    'SessionStateChanged',
    'ClosureDetected',
    'SpeedViolationStarted',
    'SpeedViolationEnded',
    'CollisionWarningChanged',
    'POIEntered',
    'POIResolved',
    'RewardTierChanged',
    'SessionErrorRaised',
]
