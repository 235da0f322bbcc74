"""
Earthwalk Geo Core
==================

Bounded Context: Territory geometry and GPS path analytics.

Design Philosophy:
- Separation of Concerns: geometry (pure) vs analytics (stateful)
- No I/O, no timers, no logging here; orchestration lives in earthwalk_session
- Great-circle distances, planar polygon predicates

Architecture:

    earthwalk_geo/
    ├── geometry/          # Pure geometry (immutable, stateless)
    │   ├── shapes.py      # GeoPoint, TimedPoint, Territory, distances, area
    │   ├── transform.py   # WGS-84 → GCJ-02
    │   ├── collision.py   # CollisionEngine, WarningLevel
    │   └── validation.py  # Claim path rules
    │
    └── analytics/         # Stateful accumulation
        ├── sampling.py    # SampleFilter, TrackerConfig
        ├── speed.py       # SpeedMonitor
        ├── tracker.py     # PathTracker
        └── rewards.py     # RewardTier

Usage:

    from earthwalk_geo import PathTracker, CollisionEngine, GeoPoint

    tracker = PathTracker()
    tracker.start()
    tracker.ingest(sample)

    result = CollisionEngine.classify(tracker.path, territories, excluding_owner="me")
    if result.has_collision:
        ...
"""

__version__ = "1.0.0"

from earthwalk_geo.geometry import (
    GeoPoint,
    TimedPoint,
    BoundingBox,
    Territory,
    haversine_m,
    path_length_m,
    polygon_area_m2,
    to_local_projection,
    to_local_projection_batch,
    CollisionEngine,
    CollisionResult,
    CollisionKind,
    WarningLevel,
    ClaimValidation,
    validate_claim_path,
)
from earthwalk_geo.analytics import (
    TrackerConfig,
    SampleFilter,
    IngestOutcome,
    IngestResult,
    SpeedMonitor,
    SpeedState,
    PathTracker,
    RewardTier,
    Rarity,
    tier_for_distance,
)

__all__ = [
    "__version__",
    "GeoPoint",
    "TimedPoint",
    "BoundingBox",
    "Territory",
    "haversine_m",
    "path_length_m",
    "polygon_area_m2",
    "to_local_projection",
    "to_local_projection_batch",
    "CollisionEngine",
    "CollisionResult",
    "CollisionKind",
    "WarningLevel",
    "ClaimValidation",
    "validate_claim_path",
    "TrackerConfig",
    "SampleFilter",
    "IngestOutcome",
    "IngestResult",
    "SpeedMonitor",
    "SpeedState",
    "PathTracker",
    "RewardTier",
    "Rarity",
    "tier_for_distance",
]
