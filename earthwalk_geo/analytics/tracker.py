"""
Path Tracker Module
===================

Stateful tracker turning raw location samples into a clean, speed-validated,
closure-aware path.

Design:
- Filtering delegated to SampleFilter (shared with exploration mode)
- Nested SpeedMonitor surfaced through speed_state / last_speed_transition
- Closure is a one-way latch per tracking session
- Caller must synchronize (single owning context); no internal locking
"""

from typing import List, Optional, Tuple

from earthwalk_geo.analytics.sampling import (
    IngestOutcome,
    IngestResult,
    SampleFilter,
    TrackerConfig,
)
from earthwalk_geo.analytics.speed import SpeedMonitor, SpeedState, SpeedTransition
from earthwalk_geo.geometry.shapes import GeoPoint, TimedPoint, haversine_m


class PathTracker:
    """
    Accumulates a walked path for a territory claim.

    State:
        path: Accepted points, in walking order
        is_closed: Latched once the path returns to its start
        over_speed: Speed verdict of the last evaluated sample
        total_distance_m: Sum of accepted segment lengths

    Usage:
        tracker = PathTracker()
        tracker.start()
        for sample in samples:
            result = tracker.ingest(sample)
            if tracker.is_closed:
                break
        tracker.stop()
        path = tracker.path
    """

    def __init__(self, config: Optional[TrackerConfig] = None):
        self.config = config or TrackerConfig()
        self._filter = SampleFilter(self.config)
        self._speed = SpeedMonitor(countdown_s=self.config.speed_countdown_s)
        self._path: List[GeoPoint] = []
        self._tracking = False
        self._closed = False
        self._closed_at_index: Optional[int] = None
        self._total_distance_m = 0.0
        self._last_speed_transition: Optional[SpeedTransition] = None

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    @property
    def path(self) -> Tuple[GeoPoint, ...]:
        return tuple(self._path)

    @property
    def point_count(self) -> int:
        return len(self._path)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def closed_at_index(self) -> Optional[int]:
        """Index of the point that closed the loop."""
        return self._closed_at_index

    @property
    def over_speed(self) -> bool:
        return self._speed.over_speed

    @property
    def total_distance_m(self) -> float:
        return self._total_distance_m

    @property
    def speed_state(self) -> SpeedState:
        return self._speed.state

    @property
    def speed_monitor(self) -> SpeedMonitor:
        return self._speed

    @property
    def last_sample(self) -> Optional[TimedPoint]:
        return self._filter.last_sample

    @property
    def last_speed_transition(self) -> Optional[SpeedTransition]:
        """Speed transition caused by the most recent ingest/check, if any."""
        return self._last_speed_transition

    @property
    def distance_to_start_m(self) -> Optional[float]:
        if len(self._path) < 2:
            return None
        return haversine_m(self._path[-1], self._path[0])

    def start(self) -> bool:
        """
        Clear the path and flags and begin tracking.

        Returns:
            False (no-op) if already tracking
        """
        if self._tracking:
            return False
        self._clear()
        self._tracking = True
        return True

    def ingest(self, sample: TimedPoint, now: Optional[float] = None) -> IngestResult:
        """
        Classify one sample and, if accepted, append it and check closure.

        Args:
            sample: Raw location sample
            now: Clock used by the speed countdown (default: sample timestamp)
        """
        self._last_speed_transition = None
        if not self._tracking:
            return IngestResult(IngestOutcome.IGNORED_NOT_TRACKING)

        result = self._filter.evaluate(sample)

        if result.over_speed is not None:
            clock = sample.timestamp if now is None else now
            self._last_speed_transition = self._speed.report(
                result.over_speed, clock, result.speed_kmh
            )

        if result.accepted:
            self._path.append(sample.point)
            self._total_distance_m += result.distance_added_m
            self.check_closure()

        return result

    def check_speed(self, now: float) -> Optional[SpeedTransition]:
        """Advance the speed countdown; returns the abort transition, if any."""
        self._last_speed_transition = self._speed.check(now)
        return self._last_speed_transition

    def check_closure(self) -> bool:
        """
        Latch is_closed when the last point is within the closure threshold
        of the first, once enough points have been collected.
        """
        if self._closed:
            return True
        if len(self._path) < self.config.min_closure_points:
            return False

        if haversine_m(self._path[-1], self._path[0]) <= self.config.closure_distance_m:
            self._closed = True
            self._closed_at_index = len(self._path) - 1
        return self._closed

    def stop(self) -> None:
        """Stop accepting samples; path, closure and distance stay readable."""
        self._tracking = False

    def reset(self) -> None:
        """Stop and clear everything."""
        self._tracking = False
        self._clear()

    def _clear(self) -> None:
        self._filter.reset()
        self._speed.reset()
        self._path.clear()
        self._closed = False
        self._closed_at_index = None
        self._total_distance_m = 0.0
        self._last_speed_transition = None

    def __len__(self) -> int:
        return len(self._path)

    def __repr__(self) -> str:
        return (
            f"PathTracker(points={len(self._path)}, closed={self._closed}, "
            f"tracking={self._tracking}, speed={self._speed.state.value})"
        )
