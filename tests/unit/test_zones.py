"""Tests for zone classification from curve patterns."""

import pytest

from codriver.curves import Curve, CurveDetector, Direction
from codriver.geometry import polyline_length
from codriver.zones import (
    DensitySegment,
    Zone,
    ZoneCharacter,
    ZoneClassifier,
    ZoneConfig,
    curves_in_zone,
    zone_at,
)
from utils.conversions import miles_to_metres
from route_fixtures import build_road, straight, straight_road, twisty_road

TOTAL = 5000.0


def make_curve(distance, angle, direction=Direction.RIGHT):
    return Curve(
        id=f"c{int(distance)}",
        lat=51.5,
        lon=-0.1,
        direction=direction,
        angle=angle,
        severity=3,
        distance_from_start=distance,
        end_distance=distance + 20.0,
    )


def assert_partition(zones, total):
    """Zones are contiguous, ordered and cover [0, total] exactly once."""
    assert zones[0].start_distance == 0.0
    assert zones[-1].end_distance == pytest.approx(total)
    for prev, cur in zip(zones, zones[1:]):
        assert prev.end_distance == cur.start_distance
        assert prev.character is not cur.character
    for zone in zones:
        assert zone.length > 0


class TestZoneClassifier:
    """Tests for ZoneClassifier.classify."""

    @pytest.fixture
    def classifier(self):
        return ZoneClassifier()

    @pytest.mark.unit
    def test_no_curves_single_transit_zone(self, classifier):
        zones = classifier.classify([], TOTAL)

        assert len(zones) == 1
        assert zones[0].start_distance == 0.0
        assert zones[0].end_distance == TOTAL
        assert zones[0].character is ZoneCharacter.TRANSIT

    @pytest.mark.unit
    def test_straight_route_is_one_transit_zone(self, classifier):
        road = straight_road(5000)
        curves = CurveDetector().detect_curves(road)
        zones = classifier.classify(curves, 5000.0)

        assert curves == []
        assert [(z.start_distance, z.end_distance, z.character) for z in zones] == [
            (0.0, 5000.0, ZoneCharacter.TRANSIT)
        ]

    @pytest.mark.unit
    def test_zero_length_route(self, classifier):
        assert classifier.classify([make_curve(10, 90)], 0.0) == []

    @pytest.mark.unit
    def test_danger_curve_creates_buffered_zone(self, classifier):
        buffer = classifier.config.danger_buffer_m
        zones = classifier.classify([make_curve(2000, 100)], TOTAL)

        assert [z.character for z in zones] == [
            ZoneCharacter.TRANSIT, ZoneCharacter.TECHNICAL, ZoneCharacter.TRANSIT,
        ]
        technical = zones[1]
        assert technical.start_distance == pytest.approx(2000 - buffer)
        assert technical.end_distance == pytest.approx(2000 + buffer)
        assert "danger" in technical.reason
        assert_partition(zones, TOTAL)

    @pytest.mark.unit
    def test_isolated_merged_curve_from_geometry(self, classifier):
        """Four tight same-direction turns merge into one curve and one buffered zone."""
        road = build_road(straight(2000) + [(30.0, 25.0)] * 4 + straight(2000))
        curves = CurveDetector().detect_curves(road)
        total = 4120.0
        zones = classifier.classify(curves, total)

        assert len(curves) == 1
        technical = [z for z in zones if z.character is ZoneCharacter.TECHNICAL]
        assert len(technical) == 1
        assert technical[0].contains(curves[0].distance_from_start)
        assert_partition(zones, total)

    @pytest.mark.unit
    def test_cluster_creates_zone_first_to_last_curve(self, classifier):
        curves = [make_curve(d, 30) for d in (1000, 1200, 1400, 1600)]
        zones = classifier.classify(curves, TOTAL)

        assert [(z.start_distance, z.end_distance, z.character) for z in zones] == [
            (0.0, 1000, ZoneCharacter.TRANSIT),
            (1000, 1600, ZoneCharacter.TECHNICAL),
            (1600, TOTAL, ZoneCharacter.TRANSIT),
        ]

    @pytest.mark.unit
    def test_sparse_curves_no_cluster(self, classifier):
        """Curves further apart than the cluster window don't form a zone."""
        spacing = classifier.config.cluster_window_m + 100
        curves = [make_curve(500 + i * spacing, 30) for i in range(3)]
        zones = classifier.classify(curves, TOTAL)

        assert len(zones) == 1
        assert zones[0].character is ZoneCharacter.TRANSIT

    @pytest.mark.unit
    def test_gentle_cluster_ignored(self, classifier):
        """Enough curves, but the mean angle is under the floor."""
        curves = [make_curve(d, 15) for d in (1000, 1200, 1400, 1600)]
        zones = classifier.classify(curves, TOTAL)

        assert len(zones) == 1

    @pytest.mark.unit
    def test_curves_below_meaningful_angle_ignored(self, classifier):
        curves = [make_curve(d, 10) for d in range(1000, 2000, 100)]
        zones = classifier.classify(curves, TOTAL)

        assert len(zones) == 1

    @pytest.mark.unit
    def test_nearby_candidates_merge(self, classifier):
        zones = classifier.classify([make_curve(1500, 90), make_curve(2200, 90)], TOTAL)

        technical = [z for z in zones if z.character is ZoneCharacter.TECHNICAL]
        assert len(technical) == 1
        assert technical[0].contains(1500)
        assert technical[0].contains(2200)

    @pytest.mark.unit
    def test_short_candidate_discarded(self):
        config = ZoneConfig(min_technical_length_m=1000.0)
        zones = ZoneClassifier(config).classify([make_curve(2000, 100)], TOTAL)

        assert len(zones) == 1
        assert zones[0].character is ZoneCharacter.TRANSIT

    @pytest.mark.unit
    def test_chicane_members_count_for_clusters(self, classifier):
        """A chicane's members count as separate curves for the cluster rule."""
        first, second = make_curve(1000, 30), make_curve(1050, 30, Direction.LEFT)
        chicane = Curve(
            id="chicane", lat=51.5, lon=-0.1, direction=Direction.RIGHT, angle=30,
            severity=6, distance_from_start=1000, end_distance=1070,
            is_chicane=True, chicane_members=(first, second),
        )
        zones = classifier.classify([chicane, make_curve(1500, 30)], TOTAL)

        technical = [z for z in zones if z.character is ZoneCharacter.TECHNICAL]
        assert len(technical) == 1
        assert technical[0].start_distance == 1000
        assert technical[0].end_distance == 1500

    @pytest.mark.unit
    def test_urban_start_overrides_technical(self, classifier):
        curves = [make_curve(d, 30) for d in (800, 1000, 1200, 1400)]
        density = [
            DensitySegment(0, 1000, ZoneCharacter.URBAN),
            DensitySegment(1000, TOTAL, ZoneCharacter.TRANSIT),
        ]
        zones = classifier.classify(curves, TOTAL, density)

        assert [(z.start_distance, z.end_distance, z.character) for z in zones] == [
            (0.0, 1000, ZoneCharacter.URBAN),
            (1000, 1400, ZoneCharacter.TECHNICAL),
            (1400, TOTAL, ZoneCharacter.TRANSIT),
        ]

    @pytest.mark.unit
    def test_urban_capped(self, classifier):
        density = [
            DensitySegment(0, 4000, ZoneCharacter.URBAN),
            DensitySegment(4000, TOTAL, ZoneCharacter.TRANSIT),
        ]
        zones = classifier.classify([], TOTAL, density)

        assert zones[0].character is ZoneCharacter.URBAN
        assert zones[0].end_distance == pytest.approx(miles_to_metres(1.5))
        assert zones[1].character is ZoneCharacter.TRANSIT
        assert_partition(zones, TOTAL)

    @pytest.mark.unit
    def test_urban_end(self, classifier):
        density = [
            DensitySegment(0, 4500, ZoneCharacter.TRANSIT),
            DensitySegment(4500, TOTAL, ZoneCharacter.URBAN),
        ]
        zones = classifier.classify([], TOTAL, density)

        assert [z.character for z in zones] == [ZoneCharacter.TRANSIT, ZoneCharacter.URBAN]
        assert zones[1].start_distance == 4500

    @pytest.mark.unit
    def test_partition_on_twisty_route(self, classifier):
        road = twisty_road([60, -90, 120, -60, 75, 90, -100, 45 * 1.5], gap_m=120)
        curves = CurveDetector().detect_curves(road)
        total = polyline_length(road)
        zones = classifier.classify(curves, total)

        assert_partition(zones, total)
        assert any(z.character is ZoneCharacter.TECHNICAL for z in zones)

    @pytest.mark.unit
    def test_config_from_settings(self, temp_settings_with_data, settings_from_file):
        settings = settings_from_file(temp_settings_with_data)
        config = ZoneConfig.from_settings(settings)

        assert config.danger_angle == 55.0
        assert config.min_curves_for_cluster == 4
        assert config.min_angle == ZoneConfig().min_angle


class TestZoneHelpers:

    @pytest.fixture
    def zones(self):
        return [
            Zone(0.0, 1000.0, ZoneCharacter.TRANSIT),
            Zone(1000.0, 2000.0, ZoneCharacter.TECHNICAL),
            Zone(2000.0, 3000.0, ZoneCharacter.TRANSIT),
        ]

    @pytest.mark.unit
    def test_zone_id_and_length(self, zones):
        assert zones[1].zone_id == "technical-1000"
        assert zones[1].length == 1000.0

    @pytest.mark.unit
    def test_zone_at(self, zones):
        assert zone_at(zones, 500) is zones[0]
        assert zone_at(zones, 1000) is zones[1]
        assert zone_at(zones, 2999) is zones[2]

    @pytest.mark.unit
    def test_zone_at_outside_route(self, zones):
        assert zone_at(zones, -50) is zones[0]
        assert zone_at(zones, 3000) is zones[2]
        assert zone_at(zones, 99999) is zones[2]

    @pytest.mark.unit
    def test_zone_at_no_zones(self):
        assert zone_at([], 100) is None

    @pytest.mark.unit
    def test_curves_in_zone(self, zones):
        curves = [make_curve(d, 40) for d in (1500, 900, 1000, 2000, 1200)]
        inside = curves_in_zone(curves, zones[1])

        assert [c.distance_from_start for c in inside] == [1000, 1200, 1500]
