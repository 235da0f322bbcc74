"""Tests for the collision engine and warning tiers."""
import math
from dataclasses import replace

import pytest

from earthwalk_geo import CollisionEngine, CollisionKind, WarningLevel
from earthwalk_geo.geometry import level_for_distance

from helpers import offset, path_of, square_territory


@pytest.fixture
def rival():
    return square_territory(0, 0, 40, 40, owner="rival", territory_id="rival-1")


# ----------------------------------------------------------------
# Predicates
# ----------------------------------------------------------------

class TestPointInPolygon:
    def test_inside_and_outside(self, rival):
        assert CollisionEngine.point_in_polygon(offset(20, 20), rival.ring)
        assert not CollisionEngine.point_in_polygon(offset(50, 20), rival.ring)
        assert not CollisionEngine.point_in_polygon(offset(20, -5), rival.ring)

    @pytest.mark.parametrize("x, y", [
        # edge midpoints
        (0, 20), (20, 40), (40, 20), (20, 0),
        # vertices
        (0, 0), (0, 40), (40, 40), (40, 0),
    ])
    def test_boundary_counts_as_inside(self, rival, x, y):
        assert CollisionEngine.point_in_polygon(offset(x, y), rival.ring)

    def test_open_ring_works(self, rival):
        assert CollisionEngine.point_in_polygon(offset(20, 20), rival.ring[:-1])

    def test_degenerate_ring(self):
        assert not CollisionEngine.point_in_polygon(offset(0, 0), path_of([(0, 0), (10, 0)]))

    def test_concave_notch(self):
        # U shape open to the north between x=10 and x=30
        ring = path_of([(0, 0), (40, 0), (40, 40), (30, 40), (30, 10), (10, 10), (10, 40), (0, 40)])
        assert CollisionEngine.point_in_polygon(offset(5, 30), ring)
        assert not CollisionEngine.point_in_polygon(offset(20, 30), ring)


class TestSegmentsIntersect:
    def test_crossing(self):
        a1, a2, b1, b2 = path_of([(0, 0), (10, 10), (0, 10), (10, 0)])
        assert CollisionEngine.segments_intersect(a1, a2, b1, b2)

    def test_disjoint(self):
        a1, a2, b1, b2 = path_of([(0, 0), (10, 0), (0, 5), (10, 5)])
        assert not CollisionEngine.segments_intersect(a1, a2, b1, b2)

    def test_collinear_overlap_not_reported(self):
        a1, a2, b1, b2 = path_of([(0, 0), (10, 0), (5, 0), (15, 0)])
        assert not CollisionEngine.segments_intersect(a1, a2, b1, b2)


# ----------------------------------------------------------------
# Point and path checks
# ----------------------------------------------------------------

class TestPointCollision:
    def test_inside_foreign(self, rival):
        result = CollisionEngine.check_point_collision(offset(20, 20), [rival], "me")
        assert result.has_collision
        assert result.kind is CollisionKind.POINT_IN_TERRITORY
        assert result.warning_level is WarningLevel.VIOLATION
        assert result.territory_id == "rival-1"

    def test_own_territory_excluded(self, rival):
        result = CollisionEngine.check_point_collision(offset(20, 20), [rival], "rival")
        assert not result.has_collision
        assert result.warning_level is WarningLevel.SAFE

    def test_inactive_territory_ignored(self, rival):
        inactive = replace(rival, is_active=False)
        assert not CollisionEngine.check_point_collision(offset(20, 20), [inactive], "me").has_collision


class TestPathCrossing:
    def test_path_through_territory(self, rival):
        result = CollisionEngine.check_path_crossing(path_of([(-10, 20), (50, 20)]), [rival], "me")
        assert result.has_collision
        assert result.kind is CollisionKind.PATH_CROSSES_BOUNDARY

    def test_segment_ending_inside(self, rival):
        result = CollisionEngine.check_path_crossing(path_of([(10, 10), (20, 20)]), [rival], "me")
        assert result.kind is CollisionKind.POINT_IN_TERRITORY

    def test_single_point_path(self, rival):
        result = CollisionEngine.check_path_crossing([offset(20, 20)], [rival], "me")
        assert result.kind is CollisionKind.POINT_IN_TERRITORY

    def test_path_around_territory(self, rival):
        path = path_of([(-10, -10), (50, -10), (50, 50), (-10, 50)])
        assert not CollisionEngine.check_path_crossing(path, [rival], "me").has_collision


# ----------------------------------------------------------------
# Warning tiers
# ----------------------------------------------------------------

class TestWarningLevels:
    @pytest.mark.parametrize("distance,level", [
        (150.0, WarningLevel.SAFE),
        (100.01, WarningLevel.SAFE),
        (100.0, WarningLevel.CAUTION),
        (50.0, WarningLevel.CAUTION),
        (49.9, WarningLevel.WARNING),
        (25.0, WarningLevel.WARNING),
        (24.9, WarningLevel.DANGER),
        (0.0, WarningLevel.DANGER),
    ])
    def test_level_for_distance(self, distance, level):
        assert level_for_distance(distance) is level

    def test_levels_ordered(self):
        assert WarningLevel.SAFE < WarningLevel.CAUTION < WarningLevel.DANGER < WarningLevel.VIOLATION
        assert WarningLevel.DANGER.label == "danger"

    def test_nearest_distance_uses_vertices(self, rival):
        # 10 m south of the middle of the south edge: nearest vertex is 20+ m away
        distance = CollisionEngine.nearest_distance(offset(20, -10), [rival], "me")
        assert distance == pytest.approx(math.hypot(20, 10), rel=1e-3)

    def test_nearest_distance_without_territories(self):
        assert CollisionEngine.nearest_distance(offset(0, 0), [], "me") == math.inf


class TestClassify:
    def test_empty_path_is_safe(self, rival):
        assert CollisionEngine.classify([], [rival], "me").warning_level is WarningLevel.SAFE

    def test_no_territories(self):
        result = CollisionEngine.classify(path_of([(0, 0)]), [], "me")
        assert result.warning_level is WarningLevel.SAFE
        assert result.nearest_distance_m is None

    @pytest.mark.parametrize("x,level", [
        (-150, WarningLevel.SAFE),
        (-80, WarningLevel.CAUTION),
        (-40, WarningLevel.WARNING),
        (-10, WarningLevel.DANGER),
    ])
    def test_graduated_from_endpoint(self, rival, x, level):
        result = CollisionEngine.classify(path_of([(-200, 0), (x, 0)]), [rival], "me")
        assert not result.has_collision
        assert result.warning_level is level

    def test_violation_wins(self, rival):
        result = CollisionEngine.classify(path_of([(-10, 20), (50, 20)]), [rival], "me")
        assert result.has_collision
        assert result.nearest_distance_m == 0.0

    def test_accepts_generator_of_territories(self, rival):
        result = CollisionEngine.classify(path_of([(-10, 0)]), (t for t in [rival]), "me")
        assert result.warning_level is WarningLevel.DANGER
