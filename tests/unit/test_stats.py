"""Tests for in-session drive statistics."""

import pytest

from codriver.curves import Curve, Direction
from codriver.stats import DriveStats, RoadStats
from utils.conversions import miles_to_metres


class TestRoadStats:

    @pytest.mark.unit
    def test_average_and_top_speed(self):
        stats = RoadStats()
        for speed in (30, 40, 50):
            stats.add(100.0, speed)

        assert stats.distance_m == 300.0
        assert stats.avg_speed == 40.0
        assert stats.top_speed == 50

    @pytest.mark.unit
    def test_empty(self):
        assert RoadStats().avg_speed == 0.0


class TestDriveStats:

    @pytest.mark.unit
    def test_distance_and_time(self):
        stats = DriveStats()
        stats.record(0.0, 30.0, now=100.0)
        stats.record(400.0, 40.0, now=110.0)
        stats.record(500.0, 50.0, now=120.0)

        summary = stats.summary()
        assert summary['drive_time_s'] == 20.0
        assert stats.distance_m == 900.0
        assert summary['avg_speed_mph'] == 40.0
        assert summary['top_speed_mph'] == 50.0

    @pytest.mark.unit
    def test_negative_distance_ignored(self):
        stats = DriveStats()
        stats.record(-50.0, 30.0)
        assert stats.distance_m == 0.0

    @pytest.mark.unit
    def test_roads_ordered_by_distance(self):
        stats = DriveStats()
        stats.record(100.0, 30.0, road_name="B4560")
        stats.record(miles_to_metres(2), 50.0, road_name="A40")
        stats.record(200.0, 20.0)

        assert stats.summary()['roads'] == ["A40", "unnamed road", "B4560"]

    @pytest.mark.unit
    def test_per_zone(self):
        stats = DriveStats()
        stats.record(0.0, 30.0, zone_id="technical-1000", now=0.0)
        stats.record(300.0, 30.0, zone_id="technical-1000", now=20.0)
        stats.record_callout("technical-1000")

        zone = stats.summary()['zones']['technical-1000']
        assert zone['time_s'] == 20.0
        assert zone['callouts'] == 1

    @pytest.mark.unit
    def test_hardest_curve(self):
        stats = DriveStats()
        gentle = Curve("a", 51.5, -0.1, Direction.LEFT, 45.0, 5, 1000.0, 1020.0)
        sharp = Curve("b", 51.5, -0.1, Direction.RIGHT, 130.0, 2, miles_to_metres(3), 5000.0)
        stats.record_callout(curve=gentle)
        stats.record_callout(curve=sharp)
        stats.record_callout(curve=gentle)

        summary = stats.summary()
        assert summary['callouts'] == 3
        assert summary['hardest_curve'] == {'angle': 130, 'direction': 'right', 'miles': 3.0}

    @pytest.mark.unit
    def test_empty_summary(self):
        summary = DriveStats().summary()
        assert summary['hardest_curve'] is None
        assert summary['distance_miles'] == 0.0
        assert summary['roads'] == []
