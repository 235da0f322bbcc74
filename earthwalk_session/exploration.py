"""
Exploration Session
===================

Bounded Context: Timed exploration walks (distance, rewards, POIs)

    idle ──start()──▶ exploring ⇄ speedWarning
      ▲                   │            │
      │                   │            └──countdown expired──▶ failed
      │                   └──stop()──▶ processing ──finalize──▶ completed
      │                                                            │
      └──────────────── reset_state() ◀── failed / completed ◀─────┘

Design:
- Single writer: commands, location samples, timer ticks and collaborator
  results all run on the owning context (see scheduler.EventLoop).
- Collaborator I/O (POI search, loot, session persistence) runs on the
  executor; results are dispatched back and applied only if the session
  generation is unchanged, so a cancelled or reset session is never
  touched by late results.
- Any exception from a collaborator is logged and degraded (no POIs, no
  items, unsaved record); processing always ends in completed.
- No timer callback runs after the method that cancelled it returns.
"""

import uuid
from concurrent.futures import Executor, Future
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from earthwalk_events import EventBus
from earthwalk_events.logging import LogEvent, StructuredLogger, create_logger
from earthwalk_events.schemas import (
    DomainEvent,
    POIEntered,
    POIResolved,
    RewardTierChanged,
    SessionErrorRaised,
    SessionStateChanged,
    SpeedViolationEnded,
    SpeedViolationStarted,
)
from earthwalk_geo import (
    GeoPoint,
    IngestResult,
    RewardTier,
    SampleFilter,
    SpeedMonitor,
    SpeedState,
    TimedPoint,
    haversine_m,
    tier_for_distance,
    to_local_projection,
)
from earthwalk_geo.analytics import SpeedTransition

from .collaborators import (
    FallbackLootGenerator,
    LootGenerator,
    POISource,
    SessionStore,
)
from .config import SessionConfig
from .location import AuthorizationStatus, LocationSource
from .models import POI, POIStatus, ExplorationResult, LootItem, SessionRecord
from .scheduler import Dispatch, InlineExecutor, Scheduler, ThreadScheduler, TimerHandle


class ExplorationState(str, Enum):
    IDLE = "idle"
    EXPLORING = "exploring"
    SPEED_WARNING = "speedWarning"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, Enum):
    SPEED_EXCEEDED = "speedExceeded"
    GPS_ERROR = "gpsError"
    USER_CANCELLED = "userCancelled"


_ACTIVE = (ExplorationState.EXPLORING, ExplorationState.SPEED_WARNING)


class ExplorationSession:
    """
    State machine for one exploration walk at a time.

    Usage:
        session = ExplorationSession(
            location_source, poi_source, loot_generator, session_store,
            bus=bus, scheduler=scheduler, config=config,
        )
        session.start()
        ...                       # samples, ticks, POI popups
        session.stop()            # processing, then completed
        print(session.result)
        session.reset_state()
    """

    def __init__(
        self,
        location_source: LocationSource,
        poi_source: POISource,
        loot_generator: LootGenerator,
        session_store: SessionStore,
        bus: Optional[EventBus] = None,
        scheduler: Optional[Scheduler] = None,
        config: Optional[SessionConfig] = None,
        user_id: Optional[str] = None,
        executor: Optional[Executor] = None,
        dispatch: Optional[Dispatch] = None,
        transform: Callable[[GeoPoint], GeoPoint] = to_local_projection,
        logger: Optional[StructuredLogger] = None,
    ):
        self.config = config or SessionConfig()
        self.location_source = location_source
        self.poi_source = poi_source
        self.session_store = session_store
        self.bus = bus or EventBus()
        self.logger = logger or create_logger("exploration")
        self._dispatch: Dispatch = dispatch or (lambda fn: fn())
        self.scheduler = scheduler or ThreadScheduler(dispatch=self._dispatch)
        self.executor = executor or InlineExecutor()
        self.user_id = user_id or self.config.owner_id
        self._transform = transform

        if isinstance(loot_generator, FallbackLootGenerator):
            self.loot = loot_generator
        else:
            self.loot = FallbackLootGenerator(loot_generator, logger=self.logger)

        self._filter = SampleFilter(self.config.tracker)
        self._speed = SpeedMonitor(countdown_s=self.config.tracker.speed_countdown_s)

        self.session_id = uuid.uuid4().hex
        self._state = ExplorationState.IDLE
        self._generation = 0
        self._last_transition_at: Optional[float] = None
        self._tick_handle: Optional[TimerHandle] = None
        self._countdown: Optional[TimerHandle] = None

        self._start_time: Optional[float] = None
        self._started_mono: Optional[float] = None
        self._end_time: Optional[float] = None
        self._duration_s = 0.0
        self._distance_m = 0.0
        self._reward_tier = RewardTier.NONE
        self._position: Optional[GeoPoint] = None
        self._last_status_log_at = 0.0

        self._pois: Dict[str, POI] = {}
        self._triggered: Set[str] = set()
        self._current_poi: Optional[POI] = None
        self._poi_search_started = False
        self._poi_loot: List[LootItem] = []

        self._result: Optional[ExplorationResult] = None
        self._error: Optional[str] = None
        self._error_reason: Optional[FailureReason] = None
        self._failure_reason: Optional[FailureReason] = None

        location_source.watch_authorization(self._on_authorization)

    # ===== Read-only state =====

    @property
    def state(self) -> ExplorationState:
        return self._state

    @property
    def generation(self) -> int:
        """Bumped whenever in-flight results must be discarded."""
        return self._generation

    @property
    def distance_m(self) -> float:
        return self._distance_m

    @property
    def duration_s(self) -> float:
        return self._duration_s

    @property
    def reward_tier(self) -> RewardTier:
        return self._reward_tier

    @property
    def speed_state(self) -> SpeedState:
        return self._speed.state

    @property
    def countdown_remaining(self) -> int:
        return self._speed.remaining(self.scheduler.now())

    @property
    def pois(self) -> Tuple[POI, ...]:
        return tuple(self._pois.values())

    @property
    def current_poi(self) -> Optional[POI]:
        """POI whose popup is open, if any."""
        return self._current_poi

    @property
    def poi_loot(self) -> Tuple[LootItem, ...]:
        return tuple(self._poi_loot)

    @property
    def result(self) -> Optional[ExplorationResult]:
        return self._result

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def error_reason(self) -> Optional[FailureReason]:
        return self._error_reason

    @property
    def failure_reason(self) -> Optional[FailureReason]:
        return self._failure_reason

    # ===== Commands =====

    def start(self) -> bool:
        """
        Start exploring.

        Valid from idle or failed, outside the debounce window, with
        location permission. A denied permission keeps the session idle and
        raises an error event.

        Returns:
            True if the session entered exploring
        """
        if self._debounced("start"):
            return False
        if self._state not in (ExplorationState.IDLE, ExplorationState.FAILED):
            self._ignored("start", f"state is {self._state.value}")
            return False

        status = self.location_source.authorization
        if status is AuthorizationStatus.NOT_DETERMINED:
            self.location_source.request_permission()
            status = self.location_source.authorization
        if status is not AuthorizationStatus.AUTHORIZED:
            self._error = "Location permission is required to explore"
            self.logger.warning(
                event=LogEvent.SESSION_COMMAND_IGNORED,
                message=self._error,
                metadata={'command': 'start', 'authorization': status.value}
            )
            self._publish(SessionErrorRaised(
                session_id=self.session_id, message=self._error, recoverable=False
            ))
            return False

        self._reset_counters()
        self._transition(ExplorationState.EXPLORING)
        self.location_source.start_updating(self._on_sample, self._on_error)
        self._tick_handle = self.scheduler.call_every(
            self.config.exploration.tick_interval_s, self._tick, name="exploration-tick"
        )
        return True

    def stop(self) -> bool:
        """
        Finish the walk: stop updates and timers, then finalize on the executor.

        Ignored before the minimum duration so a double tap cannot produce a
        zero-length session.
        """
        if self._debounced("stop"):
            return False
        if self._state not in _ACTIVE:
            self._ignored("stop", f"state is {self._state.value}")
            return False

        now = self.scheduler.now()
        elapsed = now - self._started_mono
        if elapsed < self.config.exploration.min_duration_s:
            self._ignored("stop", f"only {elapsed:.1f}s elapsed")
            return False

        self._stop_updates()
        self._end_time = self.scheduler.wall_time()
        self._duration_s = elapsed
        self._transition(ExplorationState.PROCESSING)

        generation = self._generation
        future = self.executor.submit(
            self._finalize, self.session_id, self._start_time, self._end_time, self._distance_m
        )
        future.add_done_callback(
            lambda f: self._dispatch(lambda: self._complete(generation, f))
        )
        return True

    def cancel(self) -> bool:
        """Abandon the walk (user cancelled). Any in-flight finalize is discarded."""
        if self._state not in _ACTIVE and self._state is not ExplorationState.PROCESSING:
            self._ignored("cancel", f"state is {self._state.value}")
            return False
        self._fail(FailureReason.USER_CANCELLED, "Exploration cancelled")
        return True

    def reset_state(self) -> bool:
        """Acknowledge a completed or failed session and return to idle."""
        if self._state not in (ExplorationState.COMPLETED, ExplorationState.FAILED):
            self._ignored("reset_state", f"state is {self._state.value}")
            return False
        self._generation += 1
        self._result = None
        self._error = None
        self._error_reason = None
        self._failure_reason = None
        self._current_poi = None
        self._transition(ExplorationState.IDLE)
        return True

    def dismiss_poi(self) -> bool:
        """Close the POI popup. The POI stays triggered."""
        if self._current_poi is None:
            return False
        self._current_poi = None
        return True

    def scavenge_poi(self) -> List[LootItem]:
        """
        Loot the POI whose popup is open.

        The POI becomes looted and is excluded from further proximity
        checks for the rest of the session.
        """
        poi = self._current_poi
        if poi is None:
            self._ignored("scavenge_poi", "no active POI")
            return []

        items = self.loot.generate_loot(poi)
        self._pois[poi.poi_id] = poi.looted(self.scheduler.wall_time())
        self._current_poi = None
        self._poi_loot.extend(items)

        self.logger.info(
            event=LogEvent.POI_RESOLVED,
            message=f"Scavenged {poi.name}",
            metadata={'session_id': self.session_id, 'poi_id': poi.poi_id, 'items': len(items)}
        )
        self._publish(POIResolved(
            session_id=self.session_id, poi_id=poi.poi_id, item_count=len(items)
        ))
        return items

    # ===== Inputs (owning context) =====

    def handle_location(self, sample: TimedPoint) -> Optional[IngestResult]:
        """Filter one sample, accumulate distance and check POI proximity."""
        if self._state not in _ACTIVE:
            return None

        result = self._filter.evaluate(sample)
        if result.over_speed is not None:
            transition = self._speed.report(
                result.over_speed, self.scheduler.now(), result.speed_kmh
            )
            if transition is not None:
                self._apply_speed_transition(transition)

        if not result.accepted:
            self.logger.debug(
                event=LogEvent.SAMPLE_REJECTED,
                message=f"Sample dropped: {result.outcome.value}",
                metadata={'reason': result.outcome.value, 'speed_kmh': result.speed_kmh}
            )
            return result

        self._distance_m += result.distance_added_m
        self._position = sample.point

        if not self._poi_search_started:
            self._start_poi_search(sample.point)
        if self._state in _ACTIVE:
            self._check_poi_proximity(sample.point)
        return result

    def handle_location_error(self, error: Exception) -> None:
        """Recoverable: recorded and surfaced, exploring continues."""
        if self._state not in _ACTIVE:
            return
        self._error = f"Location error: {error}"
        self._error_reason = FailureReason.GPS_ERROR
        self.logger.warning(
            event=LogEvent.LOCATION_ERROR,
            message=self._error,
            metadata={'session_id': self.session_id, 'state': self._state.value}
        )
        self._publish(SessionErrorRaised(
            session_id=self.session_id, message=self._error, recoverable=True
        ))

    def handle_authorization_change(self, status: AuthorizationStatus) -> None:
        if self._state in _ACTIVE and status.is_blocked:
            self.handle_location_error(PermissionError(f"authorization {status.value}"))

    def _on_sample(self, sample: TimedPoint) -> None:
        self._dispatch(lambda: self.handle_location(sample))

    def _on_error(self, error: Exception) -> None:
        self._dispatch(lambda: self.handle_location_error(error))

    def _on_authorization(self, status: AuthorizationStatus) -> None:
        self._dispatch(lambda: self.handle_authorization_change(status))

    # ===== Timers =====

    def _tick(self) -> None:
        if self._state not in _ACTIVE:
            return
        now = self.scheduler.now()
        self._duration_s = now - self._started_mono

        tier = tier_for_distance(self._distance_m)
        if tier is not self._reward_tier:
            previous, self._reward_tier = self._reward_tier, tier
            self._publish(RewardTierChanged(
                session_id=self.session_id,
                previous=previous.value,
                current=tier.value,
                distance_m=self._distance_m,
            ))

        if now - self._last_status_log_at >= self.config.exploration.status_log_interval_s:
            self._last_status_log_at = now
            self.logger.info(
                event=LogEvent.SESSION_STATUS,
                message="Exploring",
                metadata={
                    'session_id': self.session_id,
                    'duration_s': round(self._duration_s),
                    'distance_m': round(self._distance_m, 1),
                    'tier': self._reward_tier.value,
                    'pois': len(self._pois),
                }
            )

    def _check_speed_countdown(self) -> None:
        if self._state is not ExplorationState.SPEED_WARNING:
            return
        transition = self._speed.check(self.scheduler.now())
        if transition is not None:
            self._apply_speed_transition(transition)

    def _apply_speed_transition(self, transition: SpeedTransition) -> None:
        if transition.current is SpeedState.WARNING:
            self.logger.warning(
                event=LogEvent.SPEED_WARNING_STARTED,
                message=f"Over speed ({transition.speed_kmh or 0:.1f} km/h), countdown started",
                metadata={'session_id': self.session_id, 'speed_kmh': transition.speed_kmh}
            )
            self._transition(ExplorationState.SPEED_WARNING, reason="overSpeed")
            self._publish(SpeedViolationStarted(
                session_id=self.session_id,
                speed_kmh=transition.speed_kmh or 0.0,
                countdown_s=self._speed.countdown_s,
            ))
            self._countdown = self.scheduler.call_every(
                self.config.tracker.speed_check_interval_s,
                self._check_speed_countdown,
                name="speed-countdown",
            )

        elif transition.current is SpeedState.NORMAL:
            self._cancel_countdown()
            self.logger.info(
                event=LogEvent.SPEED_WARNING_CLEARED,
                message="Speed back to normal",
                metadata={'session_id': self.session_id, 'speed_kmh': transition.speed_kmh}
            )
            self._transition(ExplorationState.EXPLORING, reason="speedRecovered")
            self._publish(SpeedViolationEnded(session_id=self.session_id, outcome="recovered"))

        elif transition.current is SpeedState.ABORTED:
            self.logger.warning(
                event=LogEvent.SPEED_ABORTED,
                message="Speed countdown expired",
                metadata={'session_id': self.session_id}
            )
            self._publish(SpeedViolationEnded(session_id=self.session_id, outcome="aborted"))
            self._fail(FailureReason.SPEED_EXCEEDED, "Moving too fast: exploration failed")

    # ===== POIs =====

    def _start_poi_search(self, center: GeoPoint) -> None:
        self._poi_search_started = True
        generation = self._generation
        future = self.executor.submit(
            self.poi_source.search_nearby,
            center,
            self.config.exploration.poi_search_radius_m,
            self.config.exploration.poi_max_results,
        )
        future.add_done_callback(
            lambda f: self._dispatch(lambda: self._apply_poi_results(generation, f))
        )

    def _apply_poi_results(self, generation: int, future: Future) -> None:
        if generation != self._generation or self._state not in _ACTIVE:
            self.logger.debug(
                event=LogEvent.SESSION_RESULT_DISCARDED,
                message="Stale POI search result discarded",
                metadata={'session_id': self.session_id}
            )
            return

        try:
            pois = future.result()
        except Exception as e:
            self.logger.error(
                event=LogEvent.COLLABORATOR_ERROR,
                message="POI search failed",
                exc_info=e,
                metadata={'session_id': self.session_id}
            )
            self._publish(SessionErrorRaised(
                session_id=self.session_id, message=f"POI search failed: {e}", recoverable=True
            ))
            return

        for poi in pois:
            self._pois.setdefault(poi.poi_id, poi)
        self.logger.info(
            event=LogEvent.POI_LOADED,
            message=f"Loaded {len(self._pois)} POIs",
            metadata={'session_id': self.session_id, 'count': len(self._pois)}
        )
        if self._position is not None:
            self._check_poi_proximity(self._position)

    def _check_poi_proximity(self, point: GeoPoint) -> None:
        """Raise POIEntered for the first untriggered POI in range."""
        if self._current_poi is not None or not self._pois:
            return

        position = self._transform(point) if self.config.exploration.transform_user_position else point
        for poi in list(self._pois.values()):
            if poi.poi_id in self._triggered or poi.status is POIStatus.LOOTED or not poi.has_loot:
                continue
            distance = haversine_m(position, poi.coordinate)
            if distance > poi.trigger_radius_m:
                continue

            discovered = poi.discovered(self.scheduler.wall_time())
            self._pois[poi.poi_id] = discovered
            self._triggered.add(poi.poi_id)
            self._current_poi = discovered

            self.logger.info(
                event=LogEvent.POI_ENTERED,
                message=f"Entered {poi.name} ({distance:.0f} m)",
                metadata={'session_id': self.session_id, 'poi_id': poi.poi_id}
            )
            self._publish(POIEntered(
                session_id=self.session_id,
                poi_id=poi.poi_id,
                poi_name=poi.name,
                latitude=poi.coordinate.latitude,
                longitude=poi.coordinate.longitude,
                distance_m=distance,
            ))
            return

    # ===== Finalize =====

    def _finalize(
        self,
        session_id: str,
        start_time: float,
        end_time: float,
        distance_m: float
    ) -> ExplorationResult:
        """Runs on the executor; touches no session state."""
        try:
            tier, items = self.loot.generate_rewards(distance_m)
        except Exception as e:
            self.logger.error(
                event=LogEvent.COLLABORATOR_ERROR,
                message="Reward generation failed, granting tier without items",
                exc_info=e,
                metadata={'session_id': session_id}
            )
            tier, items = tier_for_distance(distance_m), []

        result = ExplorationResult(
            session_id=session_id,
            user_id=self.user_id,
            start_time=start_time,
            end_time=end_time,
            distance_m=distance_m,
            reward_tier=tier,
            items=tuple(items),
        )

        try:
            self.session_store.save_session(SessionRecord.from_result(result))
        except Exception as e:
            self.logger.error(
                event=LogEvent.COLLABORATOR_ERROR,
                message="Session save failed (result kept)",
                exc_info=e,
                metadata={'session_id': session_id}
            )
        return result

    def _complete(self, generation: int, future: Future) -> None:
        if generation != self._generation or self._state is not ExplorationState.PROCESSING:
            self.logger.info(
                event=LogEvent.SESSION_RESULT_DISCARDED,
                message="Finalize finished after the session moved on, result discarded",
                metadata={'session_id': self.session_id, 'state': self._state.value}
            )
            return

        try:
            result = future.result()
        except Exception as e:
            # finalize itself crashed: complete with the tier earned, no items
            message = f"Finalize failed: {e}"
            self.logger.error(
                event=LogEvent.COLLABORATOR_ERROR,
                message=message,
                exc_info=e,
                metadata={'session_id': self.session_id}
            )
            self._publish(SessionErrorRaised(
                session_id=self.session_id, message=message, recoverable=True
            ))
            self._error = message
            result = ExplorationResult(
                session_id=self.session_id,
                user_id=self.user_id,
                start_time=self._start_time,
                end_time=self._end_time,
                distance_m=self._distance_m,
                reward_tier=tier_for_distance(self._distance_m),
            )

        self._result = result
        self._reward_tier = result.reward_tier
        self.logger.info(
            event=LogEvent.SESSION_FINALIZED,
            message=f"Exploration complete: {result.distance_m:.0f} m, {result.reward_tier.value}",
            metadata={
                'session_id': self.session_id,
                'duration_s': round(result.duration_s, 1),
                'items': len(result.items),
            }
        )
        self._transition(ExplorationState.COMPLETED)

    # ===== Internals =====

    def _reset_counters(self) -> None:
        now = self.scheduler.now()
        self._generation += 1
        self.session_id = uuid.uuid4().hex
        self._filter.reset()
        self._speed.reset()
        self._started_mono = now
        self._start_time = self.scheduler.wall_time()
        self._end_time = None
        self._duration_s = 0.0
        self._distance_m = 0.0
        self._reward_tier = RewardTier.NONE
        self._position = None
        self._last_status_log_at = now
        self._pois.clear()
        self._triggered.clear()
        self._current_poi = None
        self._poi_search_started = False
        self._poi_loot.clear()
        self._result = None
        self._error = None
        self._error_reason = None
        self._failure_reason = None

    def _fail(self, reason: FailureReason, message: str) -> None:
        self._stop_updates()
        self._generation += 1
        self._failure_reason = reason
        self._error_reason = reason
        self._error = message
        self._publish(SessionErrorRaised(
            session_id=self.session_id, message=message, recoverable=False
        ))
        self._transition(ExplorationState.FAILED, reason=reason.value)

    def _stop_updates(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        self._cancel_countdown()
        self.location_source.stop_updating()

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def _debounced(self, command: str) -> bool:
        last = self._last_transition_at
        if last is not None and self.scheduler.now() - last < self.config.exploration.debounce_s:
            self._ignored(command, "debounced")
            return True
        return False

    def _transition(self, new_state: ExplorationState, reason: Optional[str] = None) -> None:
        previous, self._state = self._state, new_state
        self._last_transition_at = self.scheduler.now()
        self.logger.info(
            event=LogEvent.SESSION_STATE_CHANGED,
            message=f"Exploration {previous.value} -> {new_state.value}",
            metadata={'session_id': self.session_id, 'reason': reason}
        )
        self._publish(SessionStateChanged(
            session_id=self.session_id,
            mode="exploration",
            previous=previous.value,
            current=new_state.value,
            reason=reason,
        ))

    def _ignored(self, command: str, why: str) -> None:
        self.logger.debug(
            event=LogEvent.SESSION_COMMAND_IGNORED,
            message=f"Ignored {command}(): {why}",
            metadata={'session_id': self.session_id, 'command': command, 'state': self._state.value}
        )

    def _publish(self, event: DomainEvent) -> None:
        self.bus.publish(event)

    def __repr__(self) -> str:
        return (
            f"ExplorationSession(state={self._state.value}, "
            f"distance={self._distance_m:.0f}m, tier={self._reward_tier.value})"
        )
