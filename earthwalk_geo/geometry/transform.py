"""
Coordinate Transform Module
===========================

WGS-84 → GCJ-02 conversion, the projection used by map and POI providers
inside mainland China.

Design:
- Pure functions (no state, no failure modes)
- Region-gated: outside the correction box the input is returned unchanged
- The distortion polynomial is a published algorithm shared with the
  provider side; coefficients must not be altered or "simplified"
"""

import math
from typing import List, Sequence

from earthwalk_geo.geometry.shapes import GeoPoint

# Krasovsky 1940 ellipsoid
SEMI_MAJOR_AXIS = 6378245.0
ECCENTRICITY_SQ = 0.00669342162296594323

REGION_MIN_LON = 72.004
REGION_MAX_LON = 137.8347
REGION_MIN_LAT = 0.8293
REGION_MAX_LAT = 55.8271


def is_in_correction_region(point: GeoPoint) -> bool:
    """True when point falls inside the box where the correction applies."""
    return (REGION_MIN_LON <= point.longitude <= REGION_MAX_LON
            and REGION_MIN_LAT <= point.latitude <= REGION_MAX_LAT)


def _transform_lat(x: float, y: float) -> float:
    ret = -100.0 + 2.0 * x + 3.0 * y + 0.2 * y * y + 0.1 * x * y + 0.2 * math.sqrt(abs(x))
    ret += (20.0 * math.sin(6.0 * x * math.pi) + 20.0 * math.sin(2.0 * x * math.pi)) * 2.0 / 3.0
    ret += (20.0 * math.sin(y * math.pi) + 40.0 * math.sin(y / 3.0 * math.pi)) * 2.0 / 3.0
    ret += (160.0 * math.sin(y / 12.0 * math.pi) + 320.0 * math.sin(y * math.pi / 30.0)) * 2.0 / 3.0
    return ret


def _transform_lon(x: float, y: float) -> float:
    ret = 300.0 + x + 2.0 * y + 0.1 * x * x + 0.1 * x * y + 0.1 * math.sqrt(abs(x))
    ret += (20.0 * math.sin(6.0 * x * math.pi) + 20.0 * math.sin(2.0 * x * math.pi)) * 2.0 / 3.0
    ret += (20.0 * math.sin(x * math.pi) + 40.0 * math.sin(x / 3.0 * math.pi)) * 2.0 / 3.0
    ret += (150.0 * math.sin(x / 12.0 * math.pi) + 300.0 * math.sin(x / 30.0 * math.pi)) * 2.0 / 3.0
    return ret


def to_local_projection(point: GeoPoint) -> GeoPoint:
    """
    Convert a raw satellite (WGS-84) coordinate to GCJ-02.

    Args:
        point: WGS-84 coordinate

    Returns:
        GCJ-02 coordinate, or point itself outside the correction region
    """
    if not is_in_correction_region(point):
        return point

    lat = point.latitude
    lon = point.longitude

    d_lat = _transform_lat(lon - 105.0, lat - 35.0)
    d_lon = _transform_lon(lon - 105.0, lat - 35.0)

    rad_lat = lat / 180.0 * math.pi
    magic = math.sin(rad_lat)
    magic = 1 - ECCENTRICITY_SQ * magic * magic
    sqrt_magic = math.sqrt(magic)

    d_lat = (d_lat * 180.0) / ((SEMI_MAJOR_AXIS * (1 - ECCENTRICITY_SQ)) / (magic * sqrt_magic) * math.pi)
    d_lon = (d_lon * 180.0) / (SEMI_MAJOR_AXIS / sqrt_magic * math.cos(rad_lat) * math.pi)

    return GeoPoint(latitude=lat + d_lat, longitude=lon + d_lon)


def to_local_projection_batch(points: Sequence[GeoPoint]) -> List[GeoPoint]:
    """Apply to_local_projection element-wise, preserving order."""
    return [to_local_projection(p) for p in points]
