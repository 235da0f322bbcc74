"""
Geographic Shapes Module
========================

Pure geographic value types - NO state, NO side effects.

Design:
- Immutable shapes (frozen dataclass pattern)
- Validation in __post_init__ (fail fast on out-of-range coordinates)
- Great-circle distance (haversine) is the single distance used across the
  tracker, the collision engine and POI proximity
- Planar approximations for area (adequate at city-block scale)
"""

import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE_LAT = 111_320.0


@dataclass(frozen=True)
class GeoPoint:
    """
    Immutable WGS84 coordinate.

    Attributes:
        latitude: Degrees in [-90, 90]
        longitude: Degrees in [-180, 180]
    """

    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude must be in [-90, 90], got {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude must be in [-180, 180], got {self.longitude}")

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.latitude, 'lon': self.longitude}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GeoPoint':
        """Accepts {lat, lon} or {latitude, longitude}."""
        try:
            lat = data['lat'] if 'lat' in data else data['latitude']
            lon = data['lon'] if 'lon' in data else data['longitude']
            return cls(latitude=float(lat), longitude=float(lon))
        except KeyError as e:
            raise ValueError(f"Missing required coordinate field: {e}") from e
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid coordinate data: {e}") from e


@dataclass(frozen=True)
class TimedPoint:
    """
    A single location sample from the location source.

    Attributes:
        point: Reported position
        timestamp: Capture time, POSIX seconds
        horizontal_accuracy_m: Accuracy radius; negative means invalid
        speed_mps: Device-reported speed; None or negative means unavailable
    """

    point: GeoPoint
    timestamp: float
    horizontal_accuracy_m: float = 0.0
    speed_mps: Optional[float] = None

    @property
    def latitude(self) -> float:
        return self.point.latitude

    @property
    def longitude(self) -> float:
        return self.point.longitude

    @property
    def captured_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def has_device_speed(self) -> bool:
        return self.speed_mps is not None and self.speed_mps >= 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimedPoint':
        """
        Build from {lat, lon, timestamp|t, accuracy, speed}.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        point = GeoPoint.from_dict(data)
        raw_ts = data.get('timestamp', data.get('t'))
        if raw_ts is None:
            raise ValueError("Missing required field: timestamp")
        speed = data.get('speed')
        try:
            return cls(
                point=point,
                timestamp=float(raw_ts),
                horizontal_accuracy_m=float(data.get('accuracy', 0.0)),
                speed_mps=None if speed is None else float(speed),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid sample data: {e}") from e


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon box."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, point: GeoPoint) -> bool:
        return (self.min_lat <= point.latitude <= self.max_lat
                and self.min_lon <= point.longitude <= self.max_lon)


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def haversine_many(origin: GeoPoint, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Vectorised haversine from one origin to arrays of coordinates."""
    lat1 = math.radians(origin.latitude)
    lat2 = np.radians(lats)
    dlat = lat2 - lat1
    dlon = np.radians(lons - origin.longitude)
    h = np.sin(dlat / 2) ** 2 + math.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arcsin(np.minimum(1.0, np.sqrt(h)))


def path_length_m(points: Sequence[GeoPoint]) -> float:
    """Sum of consecutive segment lengths."""
    return sum(haversine_m(a, b) for a, b in zip(points, points[1:]))


def bounding_box(points: Iterable[GeoPoint]) -> BoundingBox:
    """
    Bounding box of a non-empty point sequence.

    Raises:
        ValueError: If points is empty
    """
    pts = list(points)
    if not pts:
        raise ValueError("Cannot compute bounding box of an empty point set")
    lats = [p.latitude for p in pts]
    lons = [p.longitude for p in pts]
    return BoundingBox(min(lats), max(lats), min(lons), max(lons))


def polygon_area_m2(points: Sequence[GeoPoint]) -> float:
    """
    Enclosed area using the shoelace formula on a local equirectangular
    projection anchored at the first point.

    Returns 0.0 for fewer than 3 points. A closing duplicate vertex
    contributes nothing.
    """
    if len(points) < 3:
        return 0.0

    lats = np.array([p.latitude for p in points], dtype=float)
    lons = np.array([p.longitude for p in points], dtype=float)
    meters_per_degree_lon = math.cos(math.radians(lats.mean())) * METERS_PER_DEGREE_LAT

    x = (lons - lons[0]) * meters_per_degree_lon
    y = (lats - lats[0]) * METERS_PER_DEGREE_LAT
    twice_area = np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y)
    return float(abs(twice_area) / 2.0)


def close_ring(points: Sequence[GeoPoint]) -> Tuple[GeoPoint, ...]:
    """Return points with the first vertex appended if not already closed."""
    ring = tuple(points)
    if ring and ring[0] != ring[-1]:
        ring = ring + (ring[0],)
    return ring


@dataclass(frozen=True)
class Territory:
    """
    A claimed, closed polygon owned by one user.

    Immutable once loaded; the collision engine only reads it.

    Attributes:
        territory_id: Store identifier
        owner_id: Owning user
        ring: Closed ring (first == last)
        bbox: Bounding box of the ring
        area_m2: Enclosed area
        created_at: Claim start time (POSIX seconds)
        is_active: Whether the territory participates in collision checks
    """

    territory_id: str
    owner_id: str
    ring: Tuple[GeoPoint, ...]
    bbox: BoundingBox
    area_m2: float
    created_at: float
    name: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        if len(self.ring) >= 2 and self.ring[0] != self.ring[-1]:
            raise ValueError(f"Territory {self.territory_id} ring is not closed")

    @classmethod
    def from_path(
        cls,
        owner_id: str,
        path: Sequence[GeoPoint],
        started_at: float,
        territory_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> 'Territory':
        """
        Build a territory from a walked path (closing the ring).

        Raises:
            ValueError: If path is empty
        """
        ring = close_ring(path)
        return cls(
            territory_id=territory_id or uuid.uuid4().hex,
            owner_id=owner_id,
            ring=ring,
            bbox=bounding_box(ring),
            area_m2=polygon_area_m2(ring),
            created_at=started_at,
            name=name,
        )

    @property
    def vertex_count(self) -> int:
        """Distinct vertices (closing duplicate excluded)."""
        return max(len(self.ring) - 1, 0)

    def to_wkt(self) -> str:
        coords = ", ".join(f"{p.longitude} {p.latitude}" for p in self.ring)
        return f"SRID=4326;POLYGON(({coords}))"

    def to_dict(self) -> Dict[str, Any]:
        """Upload payload for the territory store."""
        return {
            'id': self.territory_id,
            'user_id': self.owner_id,
            'name': self.name,
            'path': [p.to_dict() for p in self.ring[:-1]],
            'polygon': self.to_wkt(),
            'bbox_min_lat': self.bbox.min_lat,
            'bbox_max_lat': self.bbox.max_lat,
            'bbox_min_lon': self.bbox.min_lon,
            'bbox_max_lon': self.bbox.max_lon,
            'area': self.area_m2,
            'point_count': self.vertex_count,
            'started_at': datetime.fromtimestamp(self.created_at, tz=timezone.utc).isoformat(),
            'is_active': self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Territory':
        """
        Inverse of to_dict (also accepts a YAML fixture with `path` only).

        Raises:
            ValueError: If the path is missing or invalid
        """
        raw_path = data.get('path')
        if not raw_path:
            raise ValueError("Territory data requires a non-empty 'path'")
        path: List[GeoPoint] = [GeoPoint.from_dict(p) for p in raw_path]
        started = data.get('started_at', 0.0)
        if isinstance(started, str):
            started = datetime.fromisoformat(started).timestamp()
        territory = cls.from_path(
            owner_id=str(data.get('user_id', data.get('owner_id', ''))),
            path=path,
            started_at=float(started),
            territory_id=data.get('id'),
            name=data.get('name'),
        )
        if not data.get('is_active', True):
            territory = replace(territory, is_active=False)
        return territory
