"""
Analytics Layer
===============

Bounded Context: Stateful accumulation over a stream of location samples.

Responsibilities:
- SampleFilter: accuracy / interval / jump / speed / drift / noise rules
- SpeedMonitor: normal → warning → normal | aborted
- PathTracker: path accumulation and closure latch (claim mode)
- Reward tiers: distance step function (exploration mode)
"""

from earthwalk_geo.analytics.sampling import (
    TrackerConfig,
    SampleFilter,
    IngestOutcome,
    IngestResult,
)
from earthwalk_geo.analytics.speed import SpeedMonitor, SpeedState, SpeedTransition
from earthwalk_geo.analytics.tracker import PathTracker
from earthwalk_geo.analytics.rewards import (
    RewardTier,
    Rarity,
    tier_for_distance,
    roll_rarity,
)

__all__ = [
    "TrackerConfig",
    "SampleFilter",
    "IngestOutcome",
    "IngestResult",
    "SpeedMonitor",
    "SpeedState",
    "SpeedTransition",
    "PathTracker",
    "RewardTier",
    "Rarity",
    "tier_for_distance",
    "roll_rarity",
]
