"""
Claim Session
=============

Bounded Context: Territory claim attempts

Drives one PathTracker through a claim attempt: blocked start inside a
foreign territory, collision warnings while walking, closure, validation
and upload.

    idle ──start()──▶ tracking ⇄ speedWarning
                         │            │
                         │            └──countdown expired──▶ aborted
                         ├──collision violation──────────────▶ aborted
                         └──closure──▶ closed ──upload()──▶ uploaded
                                        │
                                        └──upload failed: stays closed (retry)

Design:
- Single writer: every method runs on the owning context. Location callbacks
  are routed through `dispatch` (EventLoop.submit in threaded mode).
- Collision checks use the registry snapshot of the moment; the registry may
  be refreshed concurrently.
- Timers (speed countdown, collision recheck) are cancelled on every exit
  from tracking, before the exit method returns.
"""

import uuid
from enum import Enum
from typing import Optional, Tuple

from earthwalk_events import EventBus
from earthwalk_events.logging import LogEvent, StructuredLogger, create_logger
from earthwalk_events.schemas import (
    ClosureDetected,
    CollisionWarningChanged,
    DomainEvent,
    SessionErrorRaised,
    SessionStateChanged,
    SpeedViolationEnded,
    SpeedViolationStarted,
)
from earthwalk_geo import (
    ClaimValidation,
    CollisionEngine,
    CollisionResult,
    GeoPoint,
    IngestOutcome,
    IngestResult,
    PathTracker,
    SpeedState,
    Territory,
    TimedPoint,
    WarningLevel,
    validate_claim_path,
)
from earthwalk_geo.analytics import SpeedTransition

from .collaborators import CollaboratorError, TerritoryStore
from .config import SessionConfig
from .location import AuthorizationStatus, LocationSource
from .registry import TerritoryRegistry
from .scheduler import Dispatch, Scheduler, ThreadScheduler, TimerHandle


class ClaimState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    SPEED_WARNING = "speedWarning"
    CLOSED = "closed"
    ABORTED = "aborted"
    UPLOADED = "uploaded"


_ACTIVE = (ClaimState.TRACKING, ClaimState.SPEED_WARNING)


class ClaimSession:
    """
    One player's territory claim attempt.

    Usage:
        session = ClaimSession(registry, store, location_source, bus=bus,
                               scheduler=scheduler, config=config)
        result = session.start(current_location)
        if result is not None and not result.has_collision:
            ...  # samples flow in via the location source
        if session.state is ClaimState.CLOSED and session.validation.is_valid:
            session.upload()
    """

    def __init__(
        self,
        registry: TerritoryRegistry,
        store: TerritoryStore,
        location_source: LocationSource,
        bus: Optional[EventBus] = None,
        scheduler: Optional[Scheduler] = None,
        config: Optional[SessionConfig] = None,
        dispatch: Optional[Dispatch] = None,
        session_id: Optional[str] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.config = config or SessionConfig()
        self.registry = registry
        self.store = store
        self.location_source = location_source
        self.bus = bus or EventBus()
        self._dispatch: Dispatch = dispatch or (lambda fn: fn())
        self.scheduler = scheduler or ThreadScheduler(dispatch=self._dispatch)
        self.session_id = session_id or uuid.uuid4().hex
        self.owner_id = self.config.owner_id
        self.logger = logger or create_logger("claim")

        self.tracker = PathTracker(self.config.tracker)
        self._state = ClaimState.IDLE
        self._warning_level = WarningLevel.SAFE
        self._started_at: Optional[float] = None
        self._countdown: Optional[TimerHandle] = None
        self._recheck: Optional[TimerHandle] = None

        self.last_collision: Optional[CollisionResult] = None
        self.validation: Optional[ClaimValidation] = None
        self.territory: Optional[Territory] = None
        self.error: Optional[str] = None
        self.abort_reason: Optional[str] = None

    # ===== Read-only state =====

    @property
    def state(self) -> ClaimState:
        return self._state

    @property
    def warning_level(self) -> WarningLevel:
        return self._warning_level

    @property
    def path(self) -> Tuple[GeoPoint, ...]:
        return self.tracker.path

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    @property
    def is_tracking(self) -> bool:
        return self._state in _ACTIVE

    # ===== Commands =====

    def start(self, current_location: GeoPoint) -> Optional[CollisionResult]:
        """
        Begin a claim attempt at current_location.

        Returns:
            The start-point collision result (has_collision=True means the
            attempt was blocked), or None if the command was ignored.
        """
        if self._state in _ACTIVE:
            self._ignored("start", "already tracking")
            return None

        if not self._authorized():
            return None

        result = CollisionEngine.check_point_collision(
            current_location, self.registry.snapshot(), self.owner_id
        )
        if result.has_collision:
            self.logger.warning(
                event=LogEvent.COLLISION_VIOLATION,
                message="Claim blocked: start point inside a foreign territory",
                metadata={'session_id': self.session_id, 'territory_id': result.territory_id}
            )
            self.last_collision = result
            self.error = result.message
            self._set_warning_level(result)
            if self._state is not ClaimState.IDLE:
                self._transition(ClaimState.IDLE, reason="blocked")
            return result

        self.validation = None
        self.territory = None
        self.error = None
        self.abort_reason = None
        self._warning_level = WarningLevel.SAFE
        # upload idempotency key, so POSIX time rather than the timer clock
        self._started_at = self.scheduler.wall_time()

        self.tracker.start()
        self.logger.info(
            event=LogEvent.TRACKER_STARTED,
            message="Claim tracking started",
            metadata={
                'session_id': self.session_id,
                'lat': current_location.latitude,
                'lon': current_location.longitude,
            }
        )
        self._transition(ClaimState.TRACKING)

        self._apply_collision(CollisionEngine.classify(
            [current_location], self.registry.snapshot(), self.owner_id
        ))

        self.location_source.start_updating(self._on_sample, self._on_error)
        self._recheck = self.scheduler.call_every(
            self.config.claim.collision_check_interval_s,
            self._recheck_collision,
            name="collision-recheck",
        )
        return result

    def stop(self) -> bool:
        """Stop tracking and return to idle. The walked path stays readable."""
        if self._state not in _ACTIVE:
            self._ignored("stop", "not tracking")
            return False
        self._stop_tracking()
        self._transition(ClaimState.IDLE, reason="stopped")
        return True

    def reset(self) -> None:
        """Stop if needed and clear the path, validation and errors."""
        if self._state in _ACTIVE:
            self._stop_tracking()
        self.tracker.reset()
        self.last_collision = None
        self.validation = None
        self.territory = None
        self.error = None
        self.abort_reason = None
        self._warning_level = WarningLevel.SAFE
        self._started_at = None
        if self._state is not ClaimState.IDLE:
            self._transition(ClaimState.IDLE, reason="reset")

    def upload(self) -> bool:
        """
        Upload the closed, validated path as a territory.

        A store failure keeps the path and validation intact and leaves the
        session closed, so calling upload() again retries. Retries reuse the
        original start time, which the store treats as the idempotency key.

        Returns:
            True once the territory is stored
        """
        if self._state is not ClaimState.CLOSED:
            self._ignored("upload", f"state is {self._state.value}")
            return False
        if self.validation is None or not self.validation.is_valid:
            self._ignored("upload", "claim is not valid")
            return False

        try:
            territory = self.store.upload_territory(
                self.owner_id, self.path, self.validation.area_m2, self._started_at
            )
        except (CollaboratorError, OSError) as e:
            self.error = f"Upload failed: {e}"
            self.logger.error(
                event=LogEvent.COLLABORATOR_ERROR,
                message="Territory upload failed, path kept for retry",
                exc_info=e,
                metadata={'session_id': self.session_id, 'points': len(self.path)}
            )
            self._publish(SessionErrorRaised(
                session_id=self.session_id, message=self.error, recoverable=True
            ))
            return False

        self.territory = territory
        self.error = None
        self.logger.info(
            event=LogEvent.CLAIM_UPLOADED,
            message=f"Territory {territory.territory_id} uploaded",
            metadata={
                'session_id': self.session_id,
                'territory_id': territory.territory_id,
                'area_m2': round(territory.area_m2, 1),
            }
        )
        self._transition(ClaimState.UPLOADED)
        return True

    # ===== Inputs (owning context) =====

    def handle_location(self, sample: TimedPoint) -> Optional[IngestResult]:
        """Apply one location sample. Ignored unless tracking."""
        if self._state not in _ACTIVE:
            return None

        result = self.tracker.ingest(sample, now=self.scheduler.now())
        transition = self.tracker.last_speed_transition
        if transition is not None:
            self._apply_speed_transition(transition)

        if not result.accepted:
            if result.outcome is not IngestOutcome.IGNORED_NOT_TRACKING:
                self.logger.debug(
                    event=LogEvent.SAMPLE_REJECTED,
                    message=f"Sample dropped: {result.outcome.value}",
                    metadata={'reason': result.outcome.value, 'speed_kmh': result.speed_kmh}
                )
            return result

        self.logger.debug(
            event=LogEvent.SAMPLE_ACCEPTED,
            message="Sample accepted",
            metadata={
                'points': self.tracker.point_count,
                'distance_added_m': round(result.distance_added_m, 2),
            }
        )

        self._apply_collision(CollisionEngine.classify(
            self.tracker.path, self.registry.snapshot(), self.owner_id
        ))
        if self._state in _ACTIVE and self.tracker.is_closed:
            self._on_closed()
        return result

    def handle_location_error(self, error: Exception) -> None:
        """GPS errors are recoverable: tracking continues with the next sample."""
        self.error = f"Location error: {error}"
        self.logger.warning(
            event=LogEvent.LOCATION_ERROR,
            message=self.error,
            metadata={'session_id': self.session_id, 'state': self._state.value}
        )
        self._publish(SessionErrorRaised(
            session_id=self.session_id, message=self.error, recoverable=True
        ))

    def _on_sample(self, sample: TimedPoint) -> None:
        self._dispatch(lambda: self.handle_location(sample))

    def _on_error(self, error: Exception) -> None:
        self._dispatch(lambda: self.handle_location_error(error))

    # ===== Internals =====

    def _authorized(self) -> bool:
        status = self.location_source.authorization
        if status is AuthorizationStatus.NOT_DETERMINED:
            self.location_source.request_permission()
            status = self.location_source.authorization
        if status is AuthorizationStatus.AUTHORIZED:
            return True

        self.error = "Location permission is required to claim territory"
        self.logger.warning(
            event=LogEvent.SESSION_COMMAND_IGNORED,
            message=self.error,
            metadata={'command': 'start', 'authorization': status.value}
        )
        self._publish(SessionErrorRaised(
            session_id=self.session_id, message=self.error, recoverable=False
        ))
        return False

    def _apply_speed_transition(self, transition: SpeedTransition) -> None:
        if transition.current is SpeedState.WARNING:
            self.logger.warning(
                event=LogEvent.SPEED_WARNING_STARTED,
                message=f"Over speed ({transition.speed_kmh or 0:.1f} km/h), countdown started",
                metadata={'session_id': self.session_id, 'speed_kmh': transition.speed_kmh}
            )
            self._transition(ClaimState.SPEED_WARNING, reason="overSpeed")
            self._publish(SpeedViolationStarted(
                session_id=self.session_id,
                speed_kmh=transition.speed_kmh or 0.0,
                countdown_s=self.config.tracker.speed_countdown_s,
            ))
            self._countdown = self.scheduler.call_every(
                self.config.tracker.speed_check_interval_s,
                self._check_speed_countdown,
                name="speed-countdown",
            )

        elif transition.current is SpeedState.NORMAL:
            self._cancel(self._countdown)
            self._countdown = None
            self.logger.info(
                event=LogEvent.SPEED_WARNING_CLEARED,
                message="Speed back to normal",
                metadata={'session_id': self.session_id, 'speed_kmh': transition.speed_kmh}
            )
            self._transition(ClaimState.TRACKING, reason="speedRecovered")
            self._publish(SpeedViolationEnded(session_id=self.session_id, outcome="recovered"))

        elif transition.current is SpeedState.ABORTED:
            self.logger.warning(
                event=LogEvent.SPEED_ABORTED,
                message="Speed countdown expired",
                metadata={'session_id': self.session_id}
            )
            self._publish(SpeedViolationEnded(session_id=self.session_id, outcome="aborted"))
            self._abort("speedExceeded", "Moving too fast: claim aborted")

    def _check_speed_countdown(self) -> None:
        if self._state is not ClaimState.SPEED_WARNING:
            return
        transition = self.tracker.check_speed(self.scheduler.now())
        if transition is not None:
            self._apply_speed_transition(transition)

    def _recheck_collision(self) -> None:
        if self._state not in _ACTIVE or not self.tracker.point_count:
            return
        self._apply_collision(CollisionEngine.classify(
            self.tracker.path, self.registry.snapshot(), self.owner_id
        ))

    def _apply_collision(self, result: CollisionResult) -> None:
        self.last_collision = result
        self._set_warning_level(result)
        if result.has_collision and self._state in _ACTIVE:
            self.logger.warning(
                event=LogEvent.COLLISION_VIOLATION,
                message=result.message,
                metadata={
                    'session_id': self.session_id,
                    'kind': result.kind.value,
                    'territory_id': result.territory_id,
                }
            )
            self._abort("collision", result.message)

    def _set_warning_level(self, result: CollisionResult) -> None:
        level = result.warning_level
        if level is self._warning_level:
            return
        previous, self._warning_level = self._warning_level, level
        self.logger.info(
            event=LogEvent.COLLISION_LEVEL_CHANGED,
            message=f"Collision warning {previous.label} -> {level.label}",
            metadata={'session_id': self.session_id, 'nearest_m': result.nearest_distance_m}
        )
        self._publish(CollisionWarningChanged(
            session_id=self.session_id,
            previous=previous.label,
            current=level.label,
            nearest_distance_m=result.nearest_distance_m,
            message=result.message,
        ))

    def _on_closed(self) -> None:
        distance_to_start = self.tracker.distance_to_start_m or 0.0
        self.logger.info(
            event=LogEvent.CLOSURE_DETECTED,
            message="Path closed",
            metadata={
                'session_id': self.session_id,
                'points': self.tracker.point_count,
                'distance_to_start_m': round(distance_to_start, 1),
            }
        )
        self._publish(ClosureDetected(
            session_id=self.session_id,
            point_count=self.tracker.point_count,
            distance_to_start_m=distance_to_start,
            total_distance_m=self.tracker.total_distance_m,
        ))
        self._stop_tracking()

        self.validation = validate_claim_path(
            self.path,
            min_points=self.config.tracker.min_closure_points,
            min_total_distance_m=self.config.claim.min_total_distance_m,
            min_area_m2=self.config.claim.min_area_m2,
        )
        self.error = self.validation.error
        self.logger.info(
            event=LogEvent.CLAIM_VALIDATED,
            message="Claim valid" if self.validation.is_valid else f"Claim invalid: {self.validation.error}",
            metadata={
                'session_id': self.session_id,
                'valid': self.validation.is_valid,
                'area_m2': round(self.validation.area_m2, 1),
                'total_distance_m': round(self.validation.total_distance_m, 1),
            }
        )
        self._transition(
            ClaimState.CLOSED,
            reason=None if self.validation.is_valid else "invalid",
        )

    def _abort(self, reason: str, message: str) -> None:
        self._stop_tracking()
        self.abort_reason = reason
        self.error = message
        self._publish(SessionErrorRaised(
            session_id=self.session_id, message=message, recoverable=False
        ))
        self._transition(ClaimState.ABORTED, reason=reason)

    def _stop_tracking(self) -> None:
        self._cancel(self._countdown)
        self._cancel(self._recheck)
        self._countdown = None
        self._recheck = None
        self.location_source.stop_updating()
        self.tracker.stop()
        self.logger.info(
            event=LogEvent.TRACKER_STOPPED,
            message="Claim tracking stopped",
            metadata={'session_id': self.session_id, 'points': self.tracker.point_count}
        )

    @staticmethod
    def _cancel(handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()

    def _transition(self, new_state: ClaimState, reason: Optional[str] = None) -> None:
        previous, self._state = self._state, new_state
        self.logger.info(
            event=LogEvent.SESSION_STATE_CHANGED,
            message=f"Claim {previous.value} -> {new_state.value}",
            metadata={'session_id': self.session_id, 'reason': reason}
        )
        self._publish(SessionStateChanged(
            session_id=self.session_id,
            mode="claim",
            previous=previous.value,
            current=new_state.value,
            reason=reason,
        ))

    def _ignored(self, command: str, why: str) -> None:
        self.logger.warning(
            event=LogEvent.SESSION_COMMAND_IGNORED,
            message=f"Ignored {command}(): {why}",
            metadata={'session_id': self.session_id, 'command': command, 'state': self._state.value}
        )

    def _publish(self, event: DomainEvent) -> None:
        self.bus.publish(event)

    def __repr__(self) -> str:
        return (
            f"ClaimSession(state={self._state.value}, points={self.tracker.point_count}, "
            f"level={self._warning_level.label})"
        )
