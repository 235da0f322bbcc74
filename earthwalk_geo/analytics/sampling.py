"""
Sample Filter Module
====================

Noise, jump and speed filtering of raw location samples.

Design:
- Encapsulates the comparison baseline (last sample that advanced it)
- evaluate() classifies one sample and advances the baseline only where
  the rules allow it
- Shared by PathTracker (claim mode) and ExplorationSession, which differ
  only in what they do with an accepted sample

Rules, in order:
    1. accuracy < 0 or > ceiling              → rejected_low_accuracy
    2. first sample                           → accepted, becomes baseline
    3. dt < min interval                      → rejected_time_too_soon (baseline kept)
    4. speed = device speed if >= 0 else distance/dt, in km/h
    5. speed > jump threshold                 → rejected_gps_jump (baseline kept)
    6. speed > max legal speed                → rejected_over_speed (baseline kept)
    7. distance > max speed × drift window    → rejected_drift (baseline kept)
    8. distance < min movement                → rejected_too_small_movement (baseline advanced)
    9. otherwise                              → accepted (baseline advanced)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from earthwalk_geo.geometry.shapes import TimedPoint, haversine_m


@dataclass(frozen=True)
class TrackerConfig:
    """
    Filtering, closure and speed-limit thresholds.

    Defaults match the walking profile the game is tuned for.
    """

    max_accuracy_m: float = 50.0
    min_interval_s: float = 1.0
    gps_jump_kmh: float = 50.0
    max_speed_kmh: float = 30.0
    min_movement_m: float = 2.0
    drift_window_s: float = 10.0
    closure_distance_m: float = 30.0
    min_closure_points: int = 10
    speed_countdown_s: float = 10.0
    speed_check_interval_s: float = 1.0

    def __post_init__(self):
        if self.max_accuracy_m <= 0:
            raise ValueError(f"max_accuracy_m must be > 0, got {self.max_accuracy_m}")
        if self.min_interval_s < 0:
            raise ValueError(f"min_interval_s must be >= 0, got {self.min_interval_s}")
        if not 0 < self.max_speed_kmh < self.gps_jump_kmh:
            raise ValueError(
                f"Need 0 < max_speed_kmh < gps_jump_kmh, got "
                f"{self.max_speed_kmh} / {self.gps_jump_kmh}"
            )
        if self.min_closure_points < 3:
            raise ValueError(
                f"min_closure_points must be >= 3, got {self.min_closure_points}"
            )
        if self.speed_countdown_s <= 0 or self.speed_check_interval_s <= 0:
            raise ValueError("speed countdown and check interval must be > 0")

    @property
    def max_jump_distance_m(self) -> float:
        """Farthest plausible legal move between two samples."""
        return self.max_speed_kmh / 3.6 * self.drift_window_s


class IngestOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED_LOW_ACCURACY = "rejected_low_accuracy"
    REJECTED_TIME_TOO_SOON = "rejected_time_too_soon"
    REJECTED_GPS_JUMP = "rejected_gps_jump"
    REJECTED_OVER_SPEED = "rejected_over_speed"
    REJECTED_DRIFT = "rejected_drift"
    REJECTED_TOO_SMALL_MOVEMENT = "rejected_too_small_movement"
    IGNORED_NOT_TRACKING = "ignored_not_tracking"

    @property
    def is_accepted(self) -> bool:
        return self is IngestOutcome.ACCEPTED


@dataclass(frozen=True)
class IngestResult:
    """
    Classification of one sample.

    Attributes:
        outcome: Filter verdict
        distance_added_m: Distance credited (accepted only)
        speed_kmh: Speed used for the verdict, when computed
        over_speed: True/False once speed was evaluated against the legal
            limit, None when the sample was rejected before that point
    """

    outcome: IngestOutcome
    distance_added_m: float = 0.0
    speed_kmh: Optional[float] = None
    over_speed: Optional[bool] = None

    @property
    def accepted(self) -> bool:
        return self.outcome.is_accepted


class SampleFilter:
    """
    Stateful filter holding the comparison baseline.

    Usage:
        sample_filter = SampleFilter(TrackerConfig())
        result = sample_filter.evaluate(sample)
        if result.accepted:
            path.append(sample.point)
    """

    def __init__(self, config: Optional[TrackerConfig] = None):
        self.config = config or TrackerConfig()
        self._last_sample: Optional[TimedPoint] = None

    @property
    def last_sample(self) -> Optional[TimedPoint]:
        return self._last_sample

    def reset(self) -> None:
        self._last_sample = None

    def evaluate(self, sample: TimedPoint) -> IngestResult:
        config = self.config

        accuracy = sample.horizontal_accuracy_m
        if accuracy < 0 or accuracy > config.max_accuracy_m:
            return IngestResult(IngestOutcome.REJECTED_LOW_ACCURACY)

        last = self._last_sample
        if last is None:
            self._last_sample = sample
            return IngestResult(IngestOutcome.ACCEPTED)

        dt = sample.timestamp - last.timestamp
        if dt <= 0 or dt < config.min_interval_s:
            return IngestResult(IngestOutcome.REJECTED_TIME_TOO_SOON)

        distance = haversine_m(last.point, sample.point)
        if sample.has_device_speed:
            speed_kmh = sample.speed_mps * 3.6
        else:
            speed_kmh = distance / dt * 3.6

        if speed_kmh > config.gps_jump_kmh:
            return IngestResult(IngestOutcome.REJECTED_GPS_JUMP, speed_kmh=speed_kmh)

        if speed_kmh > config.max_speed_kmh:
            return IngestResult(
                IngestOutcome.REJECTED_OVER_SPEED, speed_kmh=speed_kmh, over_speed=True
            )

        if distance > config.max_jump_distance_m:
            return IngestResult(
                IngestOutcome.REJECTED_DRIFT, speed_kmh=speed_kmh, over_speed=False
            )

        self._last_sample = sample
        if distance < config.min_movement_m:
            return IngestResult(
                IngestOutcome.REJECTED_TOO_SMALL_MOVEMENT, speed_kmh=speed_kmh, over_speed=False
            )

        return IngestResult(
            IngestOutcome.ACCEPTED,
            distance_added_m=distance,
            speed_kmh=speed_kmh,
            over_speed=False,
        )
