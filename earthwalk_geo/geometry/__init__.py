"""
Geometry Layer
==============

Bounded Context: Pure geographic shapes and spatial queries.

Responsibilities:
- Value types (GeoPoint, TimedPoint, Territory)
- Great-circle distance, planar area
- WGS-84 → GCJ-02 transform
- Point-in-polygon, segment intersection, graduated collision warnings
- Claim path validation
- NO state, NO timers, NO I/O
"""

from earthwalk_geo.geometry.shapes import (
    GeoPoint,
    TimedPoint,
    BoundingBox,
    Territory,
    haversine_m,
    haversine_many,
    path_length_m,
    bounding_box,
    polygon_area_m2,
    close_ring,
)
from earthwalk_geo.geometry.transform import (
    to_local_projection,
    to_local_projection_batch,
    is_in_correction_region,
)
from earthwalk_geo.geometry.collision import (
    CollisionEngine,
    CollisionResult,
    CollisionKind,
    WarningLevel,
    level_for_distance,
)
from earthwalk_geo.geometry.validation import (
    ClaimValidation,
    validate_claim_path,
    path_self_intersects,
)

__all__ = [
    "GeoPoint",
    "TimedPoint",
    "BoundingBox",
    "Territory",
    "haversine_m",
    "haversine_many",
    "path_length_m",
    "bounding_box",
    "polygon_area_m2",
    "close_ring",
    "to_local_projection",
    "to_local_projection_batch",
    "is_in_correction_region",
    "CollisionEngine",
    "CollisionResult",
    "CollisionKind",
    "WarningLevel",
    "level_for_distance",
    "ClaimValidation",
    "validate_claim_path",
    "path_self_intersects",
]
