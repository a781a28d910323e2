"""
Unit tests for speed and distance conversions.
Tests pure functions from utils/conversions.py with no mocking required.
"""

import pytest
from utils.conversions import (
    format_miles,
    knots_to_mph,
    metres_to_feet,
    metres_to_miles,
    miles_to_metres,
    mph_to_mps,
    mps_to_mph,
)


class TestSpeedConversions:
    """Tests for speed unit conversions."""

    @pytest.mark.unit
    @pytest.mark.parametrize("mph,expected_mps", [
        (0, 0),
        (1, 0.44704),
        (30, 13.4112),     # Typical urban limit
        (60, 26.8224),
        (70, 31.2928),     # UK motorway limit
    ])
    def test_mph_to_mps(self, mph, expected_mps):
        """Test miles per hour to metres per second conversion."""
        assert pytest.approx(mph_to_mps(mph), rel=1e-6) == expected_mps

    @pytest.mark.unit
    def test_speed_round_trip(self):
        """Test that converting mph->m/s->mph returns original value."""
        assert pytest.approx(mps_to_mph(mph_to_mps(47.5)), rel=1e-9) == 47.5

    @pytest.mark.unit
    @pytest.mark.parametrize("knots,expected_mph", [
        (0, 0),
        (1, 1.15078),
        (22.4, 25.7775),
        (52.1, 59.9556),
    ])
    def test_knots_to_mph(self, knots, expected_mph):
        """Test GPS speed over ground (knots) to mph conversion."""
        assert pytest.approx(knots_to_mph(knots), rel=1e-4) == expected_mph


class TestDistanceConversions:
    """Tests for distance unit conversions."""

    @pytest.mark.unit
    @pytest.mark.parametrize("miles,expected_metres", [
        (0, 0),
        (1, 1609.34),
        (0.5, 804.67),
        (10, 16093.4),
    ])
    def test_miles_to_metres(self, miles, expected_metres):
        assert pytest.approx(miles_to_metres(miles), rel=1e-6) == expected_metres

    @pytest.mark.unit
    def test_distance_round_trip(self):
        assert pytest.approx(metres_to_miles(miles_to_metres(3.7)), rel=1e-9) == 3.7

    @pytest.mark.unit
    def test_metres_to_feet(self):
        assert pytest.approx(metres_to_feet(400.0), abs=0.01) == 1312.34


class TestFormatMiles:
    """Tests for spoken distance formatting."""

    @pytest.mark.unit
    @pytest.mark.parametrize("miles,expected", [
        (1.0, "1 mile"),
        (2.0, "2 miles"),
        (2.5, "2.5 miles"),
        (0.5, "half a mile"),
        (0.45, "half a mile"),
        (0.3, "0.3 miles"),
        (0.7, "0.7 miles"),
        (12.04, "12 miles"),
    ])
    def test_miles(self, miles, expected):
        assert format_miles(miles_to_metres(miles)) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("metres,expected", [
        (0, "50 feet"),        # never "0 feet"
        (30, "100 feet"),
        (100, "350 feet"),
    ])
    def test_short_distances_in_feet(self, metres, expected):
        assert format_miles(metres) == expected
