"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

Event names are <area>.<subject>.<action>; the area is one of tracker,
speed, collision, session, poi, store, bus, mqtt or error.

Example query (rejected samples by reason, for one session):
    event = "tracker.sample.rejected" and session_id = "9f1c..."
    | stats count() by metadata.reason
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - tracker.*: GPS sample filtering, path accumulation, closure
    - speed.*: Anti-cheat speed state machine
    - collision.*: Territory collision checks
    - session.*: Claim and exploration lifecycle
    - poi.*: Points of interest
    - store.*: Collaborator calls (territories, sessions, loot)
    - mqtt.*: MQTT broker interactions
    - error.*: Error conditions
    """

    # ========== Tracker Events ==========
    TRACKER_STARTED = "tracker.started"
    """Path tracking started (path cleared)."""

    TRACKER_STOPPED = "tracker.stopped"
    """Path tracking stopped (path frozen)."""

    SAMPLE_ACCEPTED = "tracker.sample.accepted"
    """Location sample appended to the path."""

    SAMPLE_REJECTED = "tracker.sample.rejected"
    """Location sample dropped (input quality)."""

    CLOSURE_DETECTED = "tracker.closure.detected"
    """Path returned to its start point."""

    # ========== Speed Events ==========
    SPEED_WARNING_STARTED = "speed.warning.started"
    """Over-speed detected, countdown running."""

    SPEED_WARNING_CLEARED = "speed.warning.cleared"
    """Speed returned to legal range before countdown expiry."""

    SPEED_ABORTED = "speed.aborted"
    """Countdown expired while still over speed."""

    # ========== Collision Events ==========
    COLLISION_LEVEL_CHANGED = "collision.level.changed"
    """Graduated warning level changed."""

    COLLISION_VIOLATION = "collision.violation"
    """Point inside or path crossing a foreign territory."""

    # ========== Session Events ==========
    SESSION_STATE_CHANGED = "session.state.changed"
    """Session state machine transition."""

    SESSION_COMMAND_IGNORED = "session.command.ignored"
    """Command rejected by a guard (debounce, state, duration)."""

    SESSION_STATUS = "session.status"
    """Periodic session status snapshot."""

    SESSION_FINALIZED = "session.finalized"
    """Finalize step completed."""

    SESSION_RESULT_DISCARDED = "session.result.discarded"
    """In-flight result arrived after the session moved on."""

    CLAIM_VALIDATED = "session.claim.validated"
    """Closed claim path validated."""

    CLAIM_UPLOADED = "session.claim.uploaded"
    """Territory upload succeeded."""

    # ========== POI Events ==========
    POI_LOADED = "poi.loaded"
    """Nearby POIs loaded from the POI source."""

    POI_ENTERED = "poi.entered"
    """User entered a POI trigger radius."""

    POI_RESOLVED = "poi.resolved"
    """POI scavenged."""

    # ========== Store Events ==========
    TERRITORIES_LOADED = "store.territories.loaded"
    """Active territories loaded into the registry."""

    STORE_RETRY = "store.retry"
    """Retrying an idempotent collaborator call."""

    LOOT_FALLBACK = "store.loot.fallback"
    """Primary loot generator failed, local fallback used."""

    # ========== Bus / MQTT Events ==========
    EVENT_PUBLISHED = "bus.event.published"
    """Domain event published on the session bus."""

    MQTT_CONNECTED = "mqtt.connected"
    """MQTT broker connection established."""

    MQTT_DISCONNECTED = "mqtt.disconnected"
    """MQTT broker connection lost."""

    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    """Message successfully published to broker."""

    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"
    """Message publication failed."""

    # ========== Error Events ==========
    SERIALIZATION_ERROR = "error.serialization"
    """Failed to serialize message to JSON."""

    SUBSCRIBER_ERROR = "error.subscriber"
    """Event bus subscriber raised."""

    COLLABORATOR_ERROR = "error.collaborator"
    """External collaborator call failed."""

    LOCATION_ERROR = "error.location"
    """Location source reported an error."""

    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    """Failed to connect to MQTT broker."""
