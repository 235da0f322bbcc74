"""Tests for claim path validation."""
import pytest

from earthwalk_geo import validate_claim_path
from earthwalk_geo.geometry import path_self_intersects

from helpers import BOW_TIE, SQUARE_LOOP, path_of

# 40 m x 0.5 m sliver
SLIVER = [
    (0, 0), (10, 0), (20, 0), (30, 0), (40, 0),
    (40, 0.5), (30, 0.5), (20, 0.5), (10, 0.5), (0, 0.5),
]


class TestValidateClaimPath:
    def test_square_loop_is_valid(self):
        result = validate_claim_path(path_of(SQUARE_LOOP[:11]))
        assert result.is_valid
        assert result.error is None
        assert result.area_m2 == pytest.approx(2025.0, rel=0.01)
        assert result.total_distance_m == pytest.approx(155.0, rel=0.01)

    def test_not_enough_points(self):
        result = validate_claim_path(path_of(SQUARE_LOOP[:9]))
        assert not result.is_valid
        assert result.error.startswith("Not enough points")

    def test_too_short(self):
        tiny = [(0, 0), (1, 0), (2, 0), (3, 0), (4, 0), (5, 0), (5, 1), (3, 1), (1, 1), (0, 1)]
        result = validate_claim_path(path_of(tiny))
        assert result.error.startswith("Path too short")

    def test_self_intersection(self):
        result = validate_claim_path(path_of(BOW_TIE))
        assert result.error == "Path crosses itself"

    def test_area_too_small(self):
        result = validate_claim_path(path_of(SLIVER))
        assert result.error.startswith("Enclosed area too small")
        assert result.area_m2 == pytest.approx(20.0, rel=0.02)

    def test_rules_apply_in_order(self):
        # too few points wins over everything else
        result = validate_claim_path(path_of(BOW_TIE[:5]))
        assert result.error.startswith("Not enough points")

    def test_thresholds_configurable(self):
        result = validate_claim_path(path_of(SLIVER), min_area_m2=10.0)
        assert result.is_valid


class TestSelfIntersection:
    def test_simple_loop(self):
        assert not path_self_intersects(path_of(SQUARE_LOOP))

    def test_short_paths(self):
        assert not path_self_intersects(path_of([(0, 0), (10, 0), (0, 10)]))

    def test_crossing_detected(self):
        assert path_self_intersects(path_of(BOW_TIE))

    def test_return_to_start_tolerated(self):
        # last segment crosses the first: the closing overlap is ignored
        loop = [(0, 0), (20, 0), (20, 20), (0, 20), (5, -5)]
        assert not path_self_intersects(path_of(loop))
