"""
Tests for the distance, bearing and grid helpers.
"""
import math

import numpy as np
import pytest

from offline_qth.geo import (
    CARDINAL_POINTS, bearing_to_cardinal, bounding_box, grid_locator, haversine_meters,
    haversine_meters_array, initial_bearing, initial_bearing_array, to_dms,
)

ONE_DEGREE_M = 6371000.0 * math.pi / 180.0


class TestDistance:

    def test_zero_distance(self):
        assert haversine_meters(35.6, 139.7, 35.6, 139.7) == 0.0

    def test_one_degree_along_equator(self):
        assert haversine_meters(0.0, 0.0, 0.0, 1.0) == pytest.approx(ONE_DEGREE_M, rel=1e-9)

    def test_symmetric(self):
        a = haversine_meters(45.373, -121.696, 35.0, 139.0)
        b = haversine_meters(35.0, 139.0, 45.373, -121.696)
        assert a == pytest.approx(b)

    def test_antipodal_is_half_circumference(self):
        assert haversine_meters(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * 6371000.0)

    def test_short_hop_across_antimeridian(self):
        """Points either side of 180° are close, not half a world apart."""
        d = haversine_meters(-16.8, 179.9, -16.8, -179.95)
        assert 15000 < d < 17000

    def test_array_matches_scalar(self):
        lats = np.array([35.0, 36.0, -43.6, 0.0])
        lons = np.array([139.0, 140.0, 170.1, 0.0])
        expected = [haversine_meters(35.01, 139.01, la, lo) for la, lo in zip(lats, lons)]
        np.testing.assert_allclose(haversine_meters_array(35.01, 139.01, lats, lons), expected, rtol=1e-9)

    def test_array_handles_identical_points(self):
        result = haversine_meters_array(10.0, 20.0, np.array([10.0]), np.array([20.0]))
        assert result[0] == 0.0


class TestBearing:

    @pytest.mark.parametrize("lat2,lon2,expected", [
        (1.0, 0.0, 0.0),
        (0.0, 1.0, 90.0),
        (-1.0, 0.0, 180.0),
        (0.0, -1.0, 270.0),
    ])
    def test_axis_bearings(self, lat2, lon2, expected):
        assert initial_bearing(0.0, 0.0, lat2, lon2) == pytest.approx(expected, abs=1e-9)

    def test_range_is_0_to_360(self):
        for lat2, lon2 in [(-1, -1), (1, -1), (-1, 1), (1, 1)]:
            b = initial_bearing(0.0, 0.0, lat2, lon2)
            assert 0.0 <= b < 360.0

    def test_array_matches_scalar(self):
        lats = np.array([36.0, 34.0, 35.0])
        lons = np.array([140.0, 138.0, 141.0])
        expected = [initial_bearing(35.0, 139.0, la, lo) for la, lo in zip(lats, lons)]
        np.testing.assert_allclose(initial_bearing_array(35.0, 139.0, lats, lons), expected, rtol=1e-9)


class TestCardinal:

    @pytest.mark.parametrize("bearing,expected", [
        (0.0, 'N'),
        (22.4, 'N'),
        (22.5, 'NE'),
        (45.0, 'NE'),
        (90.0, 'E'),
        (135.0, 'SE'),
        (180.0, 'S'),
        (225.0, 'SW'),
        (270.0, 'W'),
        (292.5, 'NW'),
        (337.4, 'NW'),
        (337.5, 'N'),
        (359.9, 'N'),
    ])
    def test_nearest_point(self, bearing, expected):
        assert bearing_to_cardinal(bearing) == expected

    def test_always_one_of_eight(self):
        for bearing in np.arange(0.0, 360.0, 0.7):
            assert bearing_to_cardinal(float(bearing)) in CARDINAL_POINTS


class TestGridLocator:

    @pytest.mark.parametrize("lat,lon,expected", [
        (41.714775, -72.72726, 'FN31pr'),
        (35.6, 139.7, 'PM95uo'),
        (90.0, 180.0, 'RR99xx'),
        (-90.0, -180.0, 'AA00aa'),
    ])
    def test_known_locators(self, lat, lon, expected):
        assert grid_locator(lat, lon) == expected

    def test_format(self):
        loc = grid_locator(45.373, -121.696)
        assert len(loc) == 6
        assert loc[:2].isalpha() and loc[:2].isupper()
        assert loc[2:4].isdigit()
        assert loc[4:].isalpha() and loc[4:].islower()


class TestDms:

    def test_latitude(self):
        assert to_dms(35.5, True) == "35°30'0.00\" N"

    def test_negative_longitude(self):
        assert to_dms(-122.25, False) == "122°15'0.00\" W"

    def test_southern_latitude(self):
        assert to_dms(-43.6, True).endswith(" S")


class TestBoundingBox:

    def test_equator_box(self):
        rects = bounding_box(0.0, 0.0, 111.0)
        assert len(rects) == 1
        min_lat, max_lat, min_lon, max_lon = rects[0]
        assert min_lat == pytest.approx(-1.0)
        assert max_lat == pytest.approx(1.0)
        assert min_lon == pytest.approx(-1.0)
        assert max_lon == pytest.approx(1.0)

    def test_longitude_widens_with_latitude(self):
        (_, _, min_lon, max_lon), = bounding_box(60.0, 10.0, 111.0)
        assert max_lon - 10.0 == pytest.approx(2.0, rel=1e-6)
        assert 10.0 - min_lon == pytest.approx(2.0, rel=1e-6)

    def test_splits_at_antimeridian_east(self):
        rects = bounding_box(0.0, 179.5, 111.0)
        assert len(rects) == 2
        east, west = rects
        assert east[2] == pytest.approx(178.5)
        assert east[3] == 180.0
        assert west[2] == -180.0
        assert west[3] == pytest.approx(-179.5)

    def test_splits_at_antimeridian_west(self):
        rects = bounding_box(0.0, -179.5, 111.0)
        assert len(rects) == 2
        assert rects[0][2] == pytest.approx(179.5)
        assert rects[1][3] == pytest.approx(-178.5)

    def test_pole_covers_all_longitudes(self):
        rects = bounding_box(89.9, 0.0, 50.0)
        assert rects == [(pytest.approx(89.9 - 50.0 / 111.0), 90.0, -180.0, 180.0)]

    def test_exact_pole_does_not_blow_up(self):
        rects = bounding_box(90.0, 45.0, 10.0)
        assert len(rects) == 1
        assert rects[0][2:] == (-180.0, 180.0)

    def test_high_latitude_box_reaches_circle_edge(self):
        (_, _, min_lon, max_lon), = bounding_box(80.0, 0.0, 500.0)
        # (81.0364, 26.5502) lies just inside the 500 km circle
        assert haversine_meters(80.0, 0.0, 81.0364, 26.5502) < 500_000
        assert max_lon > 26.5502
        assert min_lon < -26.5502

    def test_zero_radius(self):
        assert bounding_box(35.0, 139.0, 0.0) == [(35.0, 35.0, 139.0, 139.0)]
