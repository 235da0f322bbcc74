"""
Speed Monitor Module
====================

Anti-cheat speed state machine.

    NORMAL ──over speed──▶ WARNING ──legal speed──▶ NORMAL
                              │
                              └──countdown elapsed, still over──▶ ABORTED

Design:
- Time is injected (now), never read from a clock, so replays and tests are
  deterministic
- report() is fed from sample classification, check() from a periodic timer
- ABORTED is terminal until reset()
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SpeedState(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SpeedTransition:
    """A state change reported by SpeedMonitor."""

    previous: SpeedState
    current: SpeedState
    at: float
    speed_kmh: Optional[float] = None


class SpeedMonitor:
    """
    Tracks over-speed episodes and their countdown.

    Attributes:
        countdown_s: Grace period before an over-speed episode aborts
    """

    def __init__(self, countdown_s: float = 10.0):
        if countdown_s <= 0:
            raise ValueError(f"countdown_s must be > 0, got {countdown_s}")
        self.countdown_s = countdown_s
        self._state = SpeedState.NORMAL
        self._over_speed = False
        self._warning_started_at: Optional[float] = None

    @property
    def state(self) -> SpeedState:
        return self._state

    @property
    def over_speed(self) -> bool:
        return self._over_speed

    def remaining(self, now: float) -> int:
        """Whole seconds left on the countdown (0 when not counting)."""
        if self._state is not SpeedState.WARNING or self._warning_started_at is None:
            return 0
        left = self.countdown_s - (now - self._warning_started_at)
        return max(0, math.ceil(left))

    def report(
        self,
        over_speed: bool,
        now: float,
        speed_kmh: Optional[float] = None
    ) -> Optional[SpeedTransition]:
        """
        Record the speed verdict of one sample.

        Returns:
            The transition, if the state changed
        """
        if self._state is SpeedState.ABORTED:
            return None

        self._over_speed = over_speed
        if over_speed and self._state is SpeedState.NORMAL:
            self._state = SpeedState.WARNING
            self._warning_started_at = now
            return SpeedTransition(SpeedState.NORMAL, SpeedState.WARNING, now, speed_kmh)

        if not over_speed and self._state is SpeedState.WARNING:
            self._state = SpeedState.NORMAL
            self._warning_started_at = None
            return SpeedTransition(SpeedState.WARNING, SpeedState.NORMAL, now, speed_kmh)

        return None

    def check(self, now: float) -> Optional[SpeedTransition]:
        """
        Countdown tick. Aborts when the countdown has elapsed while the last
        verdict is still over speed.
        """
        if self._state is not SpeedState.WARNING or self._warning_started_at is None:
            return None
        if now - self._warning_started_at < self.countdown_s:
            return None
        if not self._over_speed:
            return None

        self._state = SpeedState.ABORTED
        return SpeedTransition(SpeedState.WARNING, SpeedState.ABORTED, now)

    def reset(self) -> None:
        self._state = SpeedState.NORMAL
        self._over_speed = False
        self._warning_started_at = None

    def __repr__(self) -> str:
        return f"SpeedMonitor(state={self._state.value}, over_speed={self._over_speed})"
