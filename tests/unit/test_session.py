"""
Unit tests for the co-driver session.
Drives are simulated tick by tick; routing is faked and speech is logged.
"""

import pytest
from unittest.mock import MagicMock, patch

from codriver.callouts import DrivingMode
from codriver.geometry import haversine_distance, polyline_length
from codriver.gps import TelemetrySnapshot
from codriver.routing import RouteResult
from codriver.session import CoDriverSession
from codriver.simulator import RouteSimulator
from codriver.speech import LoggingSpeaker
from codriver.zones import ZoneCharacter
from route_fixtures import ORIGIN, single_bend_road, straight_road


class RoadAhead:
    """Routing service that serves the rest of a fixed road from the nearest vertex."""

    def __init__(self, road):
        self.road = road
        self.calls = 0

    def route(self, origin, target, profile="driving"):
        self.calls += 1
        nearest = min(
            range(len(self.road)),
            key=lambda i: haversine_distance(origin[0], origin[1], self.road[i][0], self.road[i][1]),
        )
        points = tuple(self.road[nearest:])
        return RouteResult(points=points, distance=polyline_length(points))


def drive(session, points, speed_mph=30.0, dt=1.0):
    """Tick the session along the points until the simulator reaches the end."""
    sim = RouteSimulator(points, speed_mph=speed_mph)
    ticks = []
    while not sim.finished:
        ticks.append(session.tick(sim.advance(dt)))
    return ticks


@pytest.fixture
def speaker():
    return LoggingSpeaker()


def spoken_texts(speaker):
    return [text for text, _, _ in speaker.spoken]


class TestRouteMode:
    """Tests for driving a loaded route."""

    @pytest.fixture
    def road(self):
        return single_bend_road(90, lead_m=800, tail_m=800)

    @pytest.fixture
    def session(self, speaker, road):
        session = CoDriverSession(None, speaker, mode=DrivingMode.SPIRITED)
        session.load_route(road)
        session.start()
        yield session
        session.stop()

    @pytest.mark.unit
    def test_load_route_needs_two_points(self, speaker):
        session = CoDriverSession(None, speaker)
        with pytest.raises(ValueError):
            session.load_route([ORIGIN])
        assert not session.is_route_mode

    @pytest.mark.unit
    def test_load_route(self, speaker, road):
        session = CoDriverSession(None, speaker)
        zones = session.load_route(road)

        assert session.is_route_mode
        assert len(session.get_curves()) == 1
        assert session.get_geometry() == tuple(road)
        assert any(z.character is ZoneCharacter.TECHNICAL for z in zones)
        assert session.get_zones() == tuple(zones)
        assert session.planner.curves == session.get_curves()

    @pytest.mark.unit
    def test_curve_called_once_on_drive(self, session, speaker, road):
        drive(session, road)

        calls = [t for t in spoken_texts(speaker) if t.startswith("Right three")]
        assert calls[:2] == ["Right three ahead", "Right three"]
        assert len(set(calls)) == len(calls)
        assert session.get_distance() == pytest.approx(polyline_length(road), abs=5.0)

    @pytest.mark.unit
    def test_progress_along_route(self, session, road):
        # Vertex 6 of the lead straight is 300 m in
        lat, lon = road[6]
        result = session.tick(TelemetrySnapshot(lat, lon, 0.0, 30.0, 1.0))
        assert result.distance == pytest.approx(300.0, abs=1.0)

    @pytest.mark.unit
    def test_progress_projects_between_vertices(self, session, road):
        lat = (road[6][0] + road[7][0]) / 2
        result = session.tick(TelemetrySnapshot(lat, road[6][1], 0.0, 30.0, 1.0))
        assert result.distance == pytest.approx(325.0, abs=1.0)

    @pytest.mark.unit
    def test_fixed_mode(self, session, road):
        result = session.tick(TelemetrySnapshot(road[0][0], road[0][1], 0.0, 30.0, 0.0))
        assert result.mode is DrivingMode.SPIRITED

    @pytest.mark.unit
    def test_mode_follows_zone(self, speaker, road):
        session = CoDriverSession(None, speaker)
        session.load_route(road)
        session.start()

        first = session.tick(TelemetrySnapshot(road[0][0], road[0][1], 0.0, 30.0, 0.0))
        apex = session.get_curves()[0]
        at_curve = session.tick(TelemetrySnapshot(apex.lat, apex.lon, 0.0, 30.0, 60.0))
        session.stop()

        assert first.zone.character is ZoneCharacter.TRANSIT
        assert first.mode is DrivingMode.HIGHWAY
        assert at_curve.zone.character is ZoneCharacter.TECHNICAL
        assert at_curve.mode is DrivingMode.TECHNICAL

    @pytest.mark.unit
    def test_first_tick_briefs_zone(self, session, road):
        result = session.tick(TelemetrySnapshot(road[0][0], road[0][1], 0.0, 30.0, 0.0))
        assert result.utterance is not None
        assert result.utterance.text.startswith("Open road")
        assert result.budget is not None

    @pytest.mark.unit
    def test_read_only_queries_follow_tick(self, session, road):
        assert session.get_current_zone() is None

        result = session.tick(TelemetrySnapshot(road[0][0], road[0][1], 0.0, 30.0, 0.0))

        assert session.get_current_zone() == result.zone
        stats = session.get_planner_stats()
        assert stats['spoken'] == 1
        assert stats['briefings'] == 1


class TestFreeDrive:
    """Tests for driving without a route, on lookahead geometry."""

    @pytest.fixture
    def road(self):
        return single_bend_road(90, lead_m=800, tail_m=1500)

    @pytest.fixture
    def session(self, speaker, road):
        session = CoDriverSession(None, speaker, routing=RoadAhead(road), async_fetch=False)
        session.start()
        yield session
        session.stop()

    @pytest.mark.unit
    def test_first_tick_fetches(self, session):
        result = session.tick(TelemetrySnapshot(ORIGIN[0], ORIGIN[1], 0.0, 30.0, 0.0))

        assert result.lookahead_updated
        assert result.mode is DrivingMode.TECHNICAL
        assert len(session.get_geometry()) > 0
        curve = session.get_curves()[0]
        assert curve.distance_from_start == pytest.approx(810.0, abs=1.0)

    @pytest.mark.unit
    def test_curve_called_once_with_refetches(self, session, speaker, road):
        drive(session, road)

        calls = [t for t in spoken_texts(speaker) if t.startswith("Right three")]
        assert calls[0] == "Right three ahead"
        assert calls.count("Right three, 30") == 1
        assert len(set(calls)) == len(calls)
        assert session.fetcher.api_calls > 1

    @pytest.mark.unit
    def test_lookahead_curves_shifted_onto_odometer(self, session, road):
        """Curves from a later fetch are placed relative to where it was requested."""
        # One vertex (50 m) every 5 s; a fetch is due every 10 s
        for i in range(11):
            lat, lon = road[i]
            session.tick(TelemetrySnapshot(lat, lon, 0.0, 30.0, i * 5.0))

        curve = session.get_curves()[0]
        assert session.fetcher.api_calls >= 2
        assert curve.distance_from_start == pytest.approx(810.0, abs=2.0)

    @pytest.mark.unit
    def test_odometer_ignores_jitter(self, session):
        session.tick(TelemetrySnapshot(ORIGIN[0], ORIGIN[1], 0.0, 30.0, 0.0))
        session.tick(TelemetrySnapshot(ORIGIN[0] + 0.000001, ORIGIN[1], 0.0, 30.0, 1.0))
        assert session.get_distance() == 0.0

    @pytest.mark.unit
    def test_no_routing_is_silent(self, speaker):
        session = CoDriverSession(None, speaker)
        session.start()
        result = session.tick(TelemetrySnapshot(ORIGIN[0], ORIGIN[1], 0.0, 30.0, 0.0))
        session.stop()

        assert not result.lookahead_updated
        assert result.mode is DrivingMode.SPIRITED
        assert session.get_curves() == ()


class TestTickErrors:

    @pytest.mark.unit
    def test_no_snapshot(self, speaker):
        session = CoDriverSession(None, speaker)
        result = session.tick(None)
        assert result.utterance is None
        assert result.distance == 0.0

    @pytest.mark.unit
    def test_tick_never_raises(self, speaker):
        session = CoDriverSession(None, speaker)
        session.load_route(straight_road(1000))
        with patch.object(session.planner, 'tick', side_effect=RuntimeError("boom")):
            result = session.tick(TelemetrySnapshot(ORIGIN[0], ORIGIN[1], 0.0, 30.0, 0.0))
        assert result.utterance is None


class TestWorker:
    """Tests for the published display snapshot and lifecycle."""

    @pytest.fixture
    def telemetry(self):
        telemetry = MagicMock()
        telemetry.read_position.return_value = None
        return telemetry

    @pytest.mark.unit
    def test_no_gps_status(self, speaker, telemetry):
        session = CoDriverSession(telemetry, speaker)
        session._update_cycle()

        data = session.get_data()
        assert data['status'] == 'no_gps'
        assert data['lat'] is None
        assert data['next_curve'] is None

    @pytest.mark.unit
    def test_active_status(self, speaker, telemetry):
        road = single_bend_road(90)
        telemetry.read_position.return_value = TelemetrySnapshot(road[2][0], road[2][1], 0.0, 30.0, 0.0)
        session = CoDriverSession(telemetry, speaker)
        session.load_route(road)
        session._update_cycle()

        data = session.get_data()
        assert data['status'] == 'active'
        assert data['distance_m'] == pytest.approx(100.0, abs=1.0)
        assert data['next_curve']['direction'] == 'right'
        assert data['next_curve']['severity'] == 3
        assert data['next_curve']['distance_m'] == pytest.approx(410, abs=2)
        assert data['zone'] == 'transit'
        assert 'spoken' in data['stats']

    @pytest.mark.unit
    def test_paused_status(self, speaker, telemetry):
        telemetry.read_position.return_value = TelemetrySnapshot(ORIGIN[0], ORIGIN[1], 0.0, 1.0, 0.0)
        session = CoDriverSession(telemetry, speaker, routing=RoadAhead(straight_road(1000)),
                                  async_fetch=False)
        session._update_cycle()
        assert session.get_data()['status'] == 'paused'

    @pytest.mark.unit
    def test_start_stop(self, telemetry):
        speech = MagicMock()
        session = CoDriverSession(telemetry, speech, update_interval_s=0.01)

        session.start()
        assert session.running
        assert session.planner.is_running
        session.stop()

        assert not session.running
        assert not session.planner.is_running
        telemetry.connect.assert_called_once()
        telemetry.disconnect.assert_called_once()
        speech.start.assert_called_once()
        speech.stop.assert_called_once()
