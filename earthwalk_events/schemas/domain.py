"""
Domain Event Schema
===================

Bounded Context: Session Event Messages

Typed events emitted by the claim and exploration sessions. Subscribers
(UI adapters, persistence, the MQTT publisher) receive these instead of
polling mutable session fields.

Design:
- One frozen dataclass per event kind, all sharing `session_id` + `timestamp`
- `event_type` is a class-level discriminator (EventType)
- Payloads carry primitives only, so this package does not depend on geometry
- to_dict() produces strict JSON (no Infinity)

Message Format (JSON):
    {
        "event_type": "collision.warning_changed",
        "session_id": "3f2a...",
        "timestamp": "2026-03-02T09:12:45.123456+00:00",
        "previous": "caution",
        "current": "warning",
        "nearest_distance_m": 41.7,
        "message": "Approaching another territory"
    }
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from .common import Timestamp, finite_or_none


class EventType(str, Enum):
    """Discriminator for domain events."""
    SESSION_STATE_CHANGED = "session.state_changed"
    CLOSURE_DETECTED = "tracker.closure_detected"
    SPEED_VIOLATION_STARTED = "speed.violation_started"
    SPEED_VIOLATION_ENDED = "speed.violation_ended"
    COLLISION_WARNING_CHANGED = "collision.warning_changed"
    POI_ENTERED = "poi.entered"
    POI_RESOLVED = "poi.resolved"
    REWARD_TIER_CHANGED = "reward.tier_changed"
    SESSION_ERROR = "session.error"


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """
    Base class for all session events.

    Attributes:
        session_id: Session that produced the event
        timestamp: Emission time (UTC)
    """
    event_type: ClassVar[EventType]

    session_id: str
    timestamp: Timestamp = field(default_factory=Timestamp.now)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        data: Dict[str, Any] = {'event_type': self.event_type.value}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Timestamp):
                value = value.to_dict()
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, float):
                value = finite_or_none(value)
            data[f.name] = value
        return data


@dataclass(frozen=True, kw_only=True)
class SessionStateChanged(DomainEvent):
    """State machine transition (claim or exploration mode)."""
    event_type: ClassVar[EventType] = EventType.SESSION_STATE_CHANGED

    mode: str
    previous: str
    current: str
    reason: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ClosureDetected(DomainEvent):
    """Tracked path came back within the closure threshold of its start."""
    event_type: ClassVar[EventType] = EventType.CLOSURE_DETECTED

    point_count: int
    distance_to_start_m: float
    total_distance_m: float


@dataclass(frozen=True, kw_only=True)
class SpeedViolationStarted(DomainEvent):
    """Over-speed detected; countdown started."""
    event_type: ClassVar[EventType] = EventType.SPEED_VIOLATION_STARTED

    speed_kmh: float
    countdown_s: float


@dataclass(frozen=True, kw_only=True)
class SpeedViolationEnded(DomainEvent):
    """
    Speed violation resolved.

    outcome is "recovered" when speed dropped in time, "aborted" when the
    countdown expired.
    """
    event_type: ClassVar[EventType] = EventType.SPEED_VIOLATION_ENDED

    outcome: str


@dataclass(frozen=True, kw_only=True)
class CollisionWarningChanged(DomainEvent):
    """Graduated collision warning level changed."""
    event_type: ClassVar[EventType] = EventType.COLLISION_WARNING_CHANGED

    previous: str
    current: str
    nearest_distance_m: Optional[float] = None
    message: str = ""


@dataclass(frozen=True, kw_only=True)
class POIEntered(DomainEvent):
    """User entered a POI trigger radius."""
    event_type: ClassVar[EventType] = EventType.POI_ENTERED

    poi_id: str
    poi_name: str
    latitude: float
    longitude: float
    distance_m: float


@dataclass(frozen=True, kw_only=True)
class POIResolved(DomainEvent):
    """POI scavenged and excluded from further checks."""
    event_type: ClassVar[EventType] = EventType.POI_RESOLVED

    poi_id: str
    item_count: int


@dataclass(frozen=True, kw_only=True)
class RewardTierChanged(DomainEvent):
    """Exploration distance crossed a reward tier threshold."""
    event_type: ClassVar[EventType] = EventType.REWARD_TIER_CHANGED

    previous: str
    current: str
    distance_m: float


@dataclass(frozen=True, kw_only=True)
class SessionErrorRaised(DomainEvent):
    """User-visible error; recoverable errors do not change state."""
    event_type: ClassVar[EventType] = EventType.SESSION_ERROR

    message: str
    recoverable: bool = True
