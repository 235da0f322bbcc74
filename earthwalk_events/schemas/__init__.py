"""
Earthwalk Event Schemas
=======================

Bounded Context: Domain event contracts

Public API
----------
Common Types:
    - Timestamp: ISO 8601 timestamp wrapper

Domain Events:
    - DomainEvent: Base class (session_id, timestamp, to_dict)
    - EventType: Event discriminator enum
    - SessionStateChanged, ClosureDetected
    - SpeedViolationStarted, SpeedViolationEnded
    - CollisionWarningChanged
    - POIEntered, POIResolved
    - RewardTierChanged, SessionErrorRaised
"""

from .common import Timestamp, finite_or_none
from .domain import (
    DomainEvent,
    EventType,
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
    'Timestamp',
    'finite_or_none',
    'DomainEvent',
    'EventType',
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
