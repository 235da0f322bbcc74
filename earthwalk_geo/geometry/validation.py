"""
Claim Validation Module
=======================

Checks a closed path before it may be uploaded as a territory.

Rules, applied in order (first failure wins):
1. point count >= min_points
2. total walked distance >= min_total_distance_m
3. no self-intersection
4. enclosed area >= min_area_m2
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from earthwalk_geo.geometry.collision import CollisionEngine
from earthwalk_geo.geometry.shapes import GeoPoint, path_length_m, polygon_area_m2


@dataclass(frozen=True)
class ClaimValidation:
    """Validation outcome; error is None when is_valid."""

    is_valid: bool
    error: Optional[str]
    area_m2: float
    total_distance_m: float


def path_self_intersects(
    path: Sequence[GeoPoint],
    skip_head: int = 2,
    skip_tail: int = 2
) -> bool:
    """
    True when two non-adjacent path segments cross.

    Pairs where the first segment is among the first skip_head segments and
    the second among the last skip_tail segments are ignored: that is where
    the path legitimately comes back to its start.
    """
    if len(path) < 4:
        return False

    segment_count = len(path) - 1
    for i in range(segment_count):
        a1, a2 = path[i], path[i + 1]
        for j in range(i + 2, segment_count):
            if i < skip_head and j >= segment_count - skip_tail:
                continue
            if CollisionEngine.segments_intersect(a1, a2, path[j], path[j + 1]):
                return True
    return False


def validate_claim_path(
    path: Sequence[GeoPoint],
    min_points: int = 10,
    min_total_distance_m: float = 50.0,
    min_area_m2: float = 50.0,
) -> ClaimValidation:
    """Apply the claim rules to a closed path."""
    total = path_length_m(path)
    area = polygon_area_m2(path)

    if len(path) < min_points:
        error = f"Not enough points: {len(path)} (need {min_points})"
    elif total < min_total_distance_m:
        error = f"Path too short: {total:.0f} m (need {min_total_distance_m:.0f} m)"
    elif path_self_intersects(path):
        error = "Path crosses itself"
    elif area < min_area_m2:
        error = f"Enclosed area too small: {area:.0f} m² (need {min_area_m2:.0f} m²)"
    else:
        error = None

    return ClaimValidation(
        is_valid=error is None,
        error=error,
        area_m2=area,
        total_distance_m=total,
    )
