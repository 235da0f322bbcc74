"""
Collision Engine Module
=======================

Stateless collision logic - applies territory geometry to a candidate point
or path.

Design:
- Pure functions (all methods static, no instance state)
- Territories are read-only inputs; callers pass an immutable snapshot
- Planar predicates in (longitude=x, latitude=y) space, adequate at
  city-block scale
- Thread-safe (no mutations)

Conventions:
- pointInPolygon: even-odd ray casting with the half-open vertex rule
  (an edge counts when one endpoint is strictly above the ray and the other
  at-or-below). Points lying exactly on the boundary are classified as
  INSIDE, for every edge and vertex.
- segmentsIntersect: orientation predicate. Collinear overlap is NOT
  reported as an intersection (known limitation).
- nearestDistance: distance to the nearest foreign VERTEX, not edge. This
  under-estimates the margin alongside long edges; the warning tiers are
  tuned against this approximation.
"""

import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from earthwalk_geo.geometry.shapes import GeoPoint, Territory, haversine_many

_BOUNDARY_EPS = 1e-12


class WarningLevel(IntEnum):
    """Graduated proximity level, ordered by severity."""
    SAFE = 0
    CAUTION = 1
    WARNING = 2
    DANGER = 3
    VIOLATION = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class CollisionKind(str, Enum):
    NONE = "none"
    POINT_IN_TERRITORY = "pointInTerritory"
    PATH_CROSSES_BOUNDARY = "pathCrossesBoundary"


# Tier boundaries (meters)
CAUTION_MAX_M = 100.0
WARNING_MAX_M = 50.0
DANGER_MAX_M = 25.0

_LEVEL_MESSAGES = {
    WarningLevel.SAFE: "No other territory nearby",
    WarningLevel.CAUTION: "Another territory is within {distance:.0f} m",
    WarningLevel.WARNING: "Approaching another territory ({distance:.0f} m)",
    WarningLevel.DANGER: "About to enter another territory ({distance:.0f} m)",
}


@dataclass(frozen=True)
class CollisionResult:
    """
    Outcome of a collision check. Transient, never persisted.

    Attributes:
        has_collision: True for point-in-territory or crossing
        kind: Collision kind
        message: Human-readable description
        nearest_distance_m: Distance to nearest foreign vertex (None if not computed)
        warning_level: Graduated level
        territory_id: Territory that caused the collision, if any
    """

    has_collision: bool
    kind: CollisionKind
    message: str
    nearest_distance_m: Optional[float]
    warning_level: WarningLevel
    territory_id: Optional[str] = None

    @classmethod
    def clear(cls, nearest_distance_m: Optional[float] = None) -> 'CollisionResult':
        """No collision, safe."""
        return cls(
            has_collision=False,
            kind=CollisionKind.NONE,
            message=_LEVEL_MESSAGES[WarningLevel.SAFE],
            nearest_distance_m=nearest_distance_m,
            warning_level=WarningLevel.SAFE,
        )

    @classmethod
    def violation(cls, kind: CollisionKind, territory: Territory) -> 'CollisionResult':
        if kind is CollisionKind.POINT_IN_TERRITORY:
            message = "Location is inside another player's territory"
        else:
            message = "Path crosses another player's territory boundary"
        return cls(
            has_collision=True,
            kind=kind,
            message=message,
            nearest_distance_m=0.0,
            warning_level=WarningLevel.VIOLATION,
            territory_id=territory.territory_id,
        )


def level_for_distance(distance_m: float) -> WarningLevel:
    """
    Map a nearest-vertex distance to a warning tier.

    safe: > 100 m, caution: 50-100 m, warning: 25-50 m (exclusive of 50),
    danger: < 25 m.
    """
    if distance_m > CAUTION_MAX_M:
        return WarningLevel.SAFE
    if distance_m >= WARNING_MAX_M:
        return WarningLevel.CAUTION
    if distance_m >= DANGER_MAX_M:
        return WarningLevel.WARNING
    return WarningLevel.DANGER


def _foreign(territories: Iterable[Territory], excluding_owner: Optional[str]) -> List[Territory]:
    return [
        t for t in territories
        if t.is_active and (excluding_owner is None or t.owner_id != excluding_owner)
    ]


class CollisionEngine:
    """
    Stateless classifier of points and paths against territories.

    Design Philosophy:
    - All methods are static (no instance state)
    - Every call works on its own snapshot of the territory list, so the
      caller may swap the list between calls
    """

    @staticmethod
    def point_in_polygon(point: GeoPoint, ring: Sequence[GeoPoint]) -> bool:
        """
        Even-odd test of point against ring (closed or open).

        Returns False for rings with fewer than 3 vertices. Boundary points
        are inside.
        """
        n = len(ring)
        if n < 3:
            return False

        x, y = point.longitude, point.latitude
        if CollisionEngine._on_boundary(point, ring):
            return True

        inside = False
        j = n - 1
        for i in range(n):
            xi, yi = ring[i].longitude, ring[i].latitude
            xj, yj = ring[j].longitude, ring[j].latitude
            if (yi > y) != (yj > y):
                x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
                if x < x_cross:
                    inside = not inside
            j = i
        return inside

    @staticmethod
    def _on_boundary(point: GeoPoint, ring: Sequence[GeoPoint]) -> bool:
        px, py = point.longitude, point.latitude
        n = len(ring)
        for i in range(n):
            a, b = ring[i], ring[(i + 1) % n]
            ax, ay, bx, by = a.longitude, a.latitude, b.longitude, b.latitude
            cross = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
            if abs(cross) > _BOUNDARY_EPS:
                continue
            if (min(ax, bx) - _BOUNDARY_EPS <= px <= max(ax, bx) + _BOUNDARY_EPS
                    and min(ay, by) - _BOUNDARY_EPS <= py <= max(ay, by) + _BOUNDARY_EPS):
                return True
        return False

    @staticmethod
    def _ccw(a: GeoPoint, b: GeoPoint, c: GeoPoint) -> bool:
        return ((c.latitude - a.latitude) * (b.longitude - a.longitude)
                > (b.latitude - a.latitude) * (c.longitude - a.longitude))

    @staticmethod
    def segments_intersect(a1: GeoPoint, a2: GeoPoint, b1: GeoPoint, b2: GeoPoint) -> bool:
        """
        True when segment a1-a2 properly crosses segment b1-b2.

        Collinear overlapping segments return False.
        """
        ccw = CollisionEngine._ccw
        return (ccw(a1, b1, b2) != ccw(a2, b1, b2)
                and ccw(a1, a2, b1) != ccw(a1, a2, b2))

    @staticmethod
    def check_point_collision(
        point: GeoPoint,
        territories: Iterable[Territory],
        excluding_owner: Optional[str]
    ) -> CollisionResult:
        """Violation if point lies inside any foreign territory."""
        for territory in _foreign(territories, excluding_owner):
            if (territory.bbox.contains(point)
                    and CollisionEngine.point_in_polygon(point, territory.ring)):
                return CollisionResult.violation(CollisionKind.POINT_IN_TERRITORY, territory)
        return CollisionResult.clear()

    @staticmethod
    def check_path_crossing(
        path: Sequence[GeoPoint],
        territories: Iterable[Territory],
        excluding_owner: Optional[str]
    ) -> CollisionResult:
        """
        Test every path edge against every foreign ring edge, then the edge's
        terminal point against the ring. First match wins.
        """
        foreign = _foreign(territories, excluding_owner)
        if len(path) == 1:
            return CollisionEngine.check_point_collision(path[0], foreign, None)

        for start, end in zip(path, path[1:]):
            seg_min_lat = min(start.latitude, end.latitude)
            seg_max_lat = max(start.latitude, end.latitude)
            seg_min_lon = min(start.longitude, end.longitude)
            seg_max_lon = max(start.longitude, end.longitude)

            for territory in foreign:
                box = territory.bbox
                if (seg_max_lat < box.min_lat or seg_min_lat > box.max_lat
                        or seg_max_lon < box.min_lon or seg_min_lon > box.max_lon):
                    continue

                ring = territory.ring
                for r1, r2 in zip(ring, ring[1:]):
                    if CollisionEngine.segments_intersect(start, end, r1, r2):
                        return CollisionResult.violation(
                            CollisionKind.PATH_CROSSES_BOUNDARY, territory
                        )

                if CollisionEngine.point_in_polygon(end, ring):
                    return CollisionResult.violation(CollisionKind.POINT_IN_TERRITORY, territory)

        return CollisionResult.clear()

    @staticmethod
    def nearest_distance(
        point: GeoPoint,
        territories: Iterable[Territory],
        excluding_owner: Optional[str]
    ) -> float:
        """
        Minimum great-circle distance from point to any foreign vertex.

        Returns math.inf when there is no foreign territory.
        """
        lats: List[float] = []
        lons: List[float] = []
        for territory in _foreign(territories, excluding_owner):
            for vertex in territory.ring[:-1] or territory.ring:
                lats.append(vertex.latitude)
                lons.append(vertex.longitude)

        if not lats:
            return math.inf

        distances = haversine_many(point, np.asarray(lats), np.asarray(lons))
        return float(distances.min())

    @staticmethod
    def classify(
        path: Sequence[GeoPoint],
        territories: Iterable[Territory],
        excluding_owner: Optional[str]
    ) -> CollisionResult:
        """
        Primary entry point: violation check first, then graduated warning
        from the path's current endpoint.
        """
        if not path:
            return CollisionResult.clear()

        snapshot: Tuple[Territory, ...] = tuple(territories)
        crossing = CollisionEngine.check_path_crossing(path, snapshot, excluding_owner)
        if crossing.has_collision:
            return crossing

        distance = CollisionEngine.nearest_distance(path[-1], snapshot, excluding_owner)
        level = level_for_distance(distance)
        return CollisionResult(
            has_collision=False,
            kind=CollisionKind.NONE,
            message=_LEVEL_MESSAGES[level].format(distance=distance),
            nearest_distance_m=None if math.isinf(distance) else distance,
            warning_level=level,
        )
