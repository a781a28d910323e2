"""
Co-driver session: the one loop that owns a drive.

A session reads one telemetry snapshot per tick, works out how far along
the route (or, in free drive, the odometer) the vehicle is, keeps the
lookahead geometry fresh, and lets the speech planner decide what to say.
The worker thread publishes a read-only snapshot for display after every
tick; nothing outside the session mutates its state.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from .callouts import DrivingMode, mode_for_road_class, mode_for_zone
from .chatter import ChatterItem, build_progress_timeline
from .curves import Curve, CurveDetector
from .geometry import _get_lat_lon, cumulative_distances, haversine_distance, project_to_polyline
from .gps import TelemetrySnapshot, TelemetrySource
from .lookahead import LookaheadConfig, LookaheadFetcher, LookaheadResult
from .planner import PlannerConfig, PlanningInput, SpeechBudget, SpeechPlanner, Utterance
from .routing import RoutingService
from .speech import SpeechOutput
from .zones import DensitySegment, Zone, ZoneClassifier, zone_at
from utils.snapshot_worker import BoundedQueueWorker
from config import CODRIVER_UPDATE_INTERVAL_S

logger = logging.getLogger('tramo.session')

# Progress search window around the previous route index (vertices)
_SEARCH_BEHIND = 5
_SEARCH_AHEAD = 300

# Further than this from the windowed match means we lost our place (metres)
_RELOCATE_M = 150.0

# GPS jitter below this is not added to the odometer (metres)
_ODOMETER_MIN_STEP_M = 0.5


@dataclass(frozen=True)
class SessionTick:
    """What changed on one tick."""

    lookahead_updated: bool = False
    utterance: Optional[Utterance] = None
    zone: Optional[Zone] = None
    budget: Optional[SpeechBudget] = None
    distance: float = 0.0
    mode: Optional[DrivingMode] = None


class CoDriverSession(BoundedQueueWorker):
    """Owns the tick loop for one drive, in route mode or free drive."""

    def __init__(
        self,
        telemetry: Optional[TelemetrySource],
        speech: SpeechOutput,
        routing: Optional[RoutingService] = None,
        mode: Optional[DrivingMode] = None,
        detector: Optional[CurveDetector] = None,
        classifier: Optional[ZoneClassifier] = None,
        planner_config: Optional[PlannerConfig] = None,
        lookahead_config: Optional[LookaheadConfig] = None,
        async_fetch: bool = True,
        update_interval_s: float = CODRIVER_UPDATE_INTERVAL_S,
        rng=None,
    ):
        """
        Args:
            telemetry: Position source read by the worker thread
            speech: Speech output handed every accepted utterance
            routing: Routing service for free-drive lookahead (optional)
            mode: Fixed driving mode, or None to pick it automatically
            detector: Curve detector shared by route loading and lookahead
            classifier: Zone classifier for loaded routes
            planner_config: Speech planner thresholds
            lookahead_config: Lookahead trigger thresholds
            async_fetch: Fetch lookahead geometry in a background thread
            update_interval_s: Worker loop period
            rng: Random source for chatter variants
        """
        super().__init__()
        self.telemetry = telemetry
        self.speech = speech
        self.mode = mode
        self.update_interval_s = update_interval_s

        self.detector = detector or CurveDetector()
        self.classifier = classifier or ZoneClassifier()
        self.planner = SpeechPlanner(speech, planner_config, rng=rng)
        self.fetcher: Optional[LookaheadFetcher] = None
        if routing is not None:
            self.fetcher = LookaheadFetcher(
                routing, self.detector, lookahead_config, async_fetch=async_fetch
            )

        self._state_lock = threading.Lock()

        # Route mode
        self._route_points: Tuple[Tuple[float, float], ...] = ()
        self._route_cum: List[float] = []
        self._route_index: Optional[int] = None
        self._route_curves: Tuple[Curve, ...] = ()
        self._zones: Tuple[Zone, ...] = ()

        # Free drive
        self._odometer = 0.0
        self._last_fix: Optional[Tuple[float, float]] = None
        self._odometer_history: Deque[Tuple[float, float]] = deque(maxlen=256)
        self._lookahead: Optional[LookaheadResult] = None
        self._lookahead_curves: Tuple[Curve, ...] = ()

        self._distance = 0.0
        self._current_zone: Optional[Zone] = None
        self._current_mode: Optional[DrivingMode] = None
        self._last_snapshot: Optional[TelemetrySnapshot] = None
        self._last_utterance: Optional[Utterance] = None

    # ------------------------------------------------------------------
    # Route setup
    # ------------------------------------------------------------------

    @property
    def is_route_mode(self) -> bool:
        return len(self._route_points) >= 2

    def load_route(
        self,
        points: Sequence,
        density_segments: Optional[Sequence[DensitySegment]] = None,
        chatter: Optional[Sequence[ChatterItem]] = None,
    ) -> List[Zone]:
        """
        Prepare a whole route: curves, zones and chatter.

        Args:
            points: Ordered route polyline
            density_segments: Optional population-density data along the route
            chatter: Chatter timeline; a progress timeline is built if None

        Returns:
            The route's zones
        """
        coords = tuple(_get_lat_lon(p) for p in points)
        if len(coords) < 2:
            raise ValueError("A route needs at least two points")

        cum = cumulative_distances(coords)
        total = cum[-1]
        curves = self.detector.detect_curves(coords)
        zones = self.classifier.classify(curves, total, density_segments)
        if chatter is None:
            chatter = build_progress_timeline(total, zones, curves)

        with self._state_lock:
            self._route_points = coords
            self._route_cum = cum
            self._route_index = None
            self._route_curves = tuple(curves)
            self._zones = tuple(zones)
        self.planner.set_route(curves, zones, chatter)

        logger.info(
            "Route loaded: %.1f km, %d curves, %d zones, %d chatter items",
            total / 1000.0, len(curves), len(zones), len(chatter),
        )
        return list(zones)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the planner, the speaker, the telemetry source and the worker thread."""
        self.planner.start()
        speaker_start = getattr(self.speech, "start", None)
        if speaker_start:
            speaker_start()
        if self.telemetry is not None:
            self.telemetry.connect()
            super().start()

    def stop(self):
        """Stop everything. Nothing is spoken after this returns."""
        self.planner.stop()
        super().stop()
        if self.fetcher is not None:
            self.fetcher.reset()
        speaker_stop = getattr(self.speech, "stop", None)
        if speaker_stop:
            speaker_stop()
        if self.telemetry is not None:
            self.telemetry.disconnect()
        with self._state_lock:
            self._route_index = None
            self._odometer = 0.0
            self._last_fix = None
            self._odometer_history.clear()
            self._lookahead = None
            self._lookahead_curves = ()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, snapshot: Optional[TelemetrySnapshot]) -> SessionTick:
        """
        Run one cycle for a telemetry snapshot. Never raises.

        Returns:
            SessionTick describing what changed
        """
        try:
            return self._tick(snapshot)
        except Exception as e:
            logger.error("Session tick failed: %s", e, exc_info=True)
            return SessionTick(distance=self._distance)

    def _tick(self, snapshot: Optional[TelemetrySnapshot]) -> SessionTick:
        if snapshot is None:
            return SessionTick(distance=self._distance)

        lookahead_updated = False
        with self._state_lock:
            self._last_snapshot = snapshot
            if self.is_route_mode:
                distance = self._route_progress(snapshot)
            else:
                distance = self._advance_odometer(snapshot)
            self._distance = distance

        if not self.is_route_mode and self.fetcher is not None:
            result = self.fetcher.update(snapshot, now=snapshot.timestamp)
            if result is not None:
                self._apply_lookahead(result)
                lookahead_updated = True

        zone = zone_at(self._zones, distance)
        mode = self._resolve_mode(zone)

        road_name = None
        if self._lookahead is not None:
            road_name = self._lookahead.road_name or None

        utterance = self.planner.tick(
            PlanningInput(
                distance=distance,
                speed_mph=snapshot.speed_mph,
                mode=mode,
                lat=snapshot.lat,
                lon=snapshot.lon,
                heading=snapshot.heading,
                road_name=road_name,
            ),
            now=snapshot.timestamp,
        )

        with self._state_lock:
            self._current_zone = zone
            self._current_mode = mode
            if utterance is not None:
                self._last_utterance = utterance

        return SessionTick(
            lookahead_updated=lookahead_updated,
            utterance=utterance,
            zone=zone,
            budget=self.planner.last_budget,
            distance=distance,
            mode=mode,
        )

    def _resolve_mode(self, zone: Optional[Zone]) -> DrivingMode:
        if self.mode is not None:
            return self.mode
        if self.is_route_mode:
            return mode_for_zone(zone)
        road_class = self._lookahead.road_class if self._lookahead else None
        return mode_for_road_class(road_class)

    def _route_progress(self, snapshot: TelemetrySnapshot) -> float:
        """Distance along the route at the vehicle's closest point on it."""
        points = self._route_points
        start, end = 0, len(points)
        if self._route_index is not None:
            start = max(0, self._route_index - _SEARCH_BEHIND)
            end = min(len(points), self._route_index + _SEARCH_AHEAD)

        seg, frac, dist = project_to_polyline(snapshot.lat, snapshot.lon, points[start:end])
        if self._route_index is not None and dist > _RELOCATE_M:
            seg_all, frac_all, dist_all = project_to_polyline(snapshot.lat, snapshot.lon, points)
            if dist_all < dist:
                logger.info("Relocated on route (%.0fm off the expected stretch)", dist)
                start, seg, frac = 0, seg_all, frac_all

        index = start + seg
        self._route_index = index
        if index + 1 >= len(self._route_cum):
            return self._route_cum[-1]
        seg_start = self._route_cum[index]
        return seg_start + frac * (self._route_cum[index + 1] - seg_start)

    def _advance_odometer(self, snapshot: TelemetrySnapshot) -> float:
        if self._last_fix is not None:
            step = haversine_distance(self._last_fix[0], self._last_fix[1], snapshot.lat, snapshot.lon)
            if step >= _ODOMETER_MIN_STEP_M:
                self._odometer += step
                self._last_fix = (snapshot.lat, snapshot.lon)
        else:
            self._last_fix = (snapshot.lat, snapshot.lon)
        self._odometer_history.append((snapshot.timestamp, self._odometer))
        return self._odometer

    def _odometer_at(self, timestamp: float) -> float:
        """Odometer reading at (or nearest before) a past snapshot time."""
        reading = self._odometer
        for ts, odo in reversed(self._odometer_history):
            reading = odo
            if ts <= timestamp:
                break
        return reading

    def _apply_lookahead(self, result: LookaheadResult):
        """Move lookahead curves onto the odometer axis and hand them to the planner."""
        with self._state_lock:
            offset = self._odometer_at(result.fetched_at)
            shifted = tuple(c.shifted(offset) for c in result.curves)
            self._lookahead = result
            self._lookahead_curves = shifted
        self.planner.update_curves(shifted)

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _worker_loop(self):
        """Read telemetry, tick, publish. Errors are logged and the loop carries on."""
        logger.info("Co-driver worker thread started")

        while self.running:
            loop_start = time.monotonic()
            try:
                self._update_cycle()
            except Exception as e:
                logger.error("Co-driver update error: %s", e, exc_info=True)

            elapsed = time.monotonic() - loop_start
            time.sleep(max(0.0, self.update_interval_s - elapsed))

        logger.info("Co-driver worker thread stopped")

    def _update_cycle(self):
        snapshot = self.telemetry.read_position()
        if snapshot is None:
            self._publish_snapshot(self._display_data('no_gps'))
            return

        result = self.tick(snapshot)
        status = 'active'
        if not self.is_route_mode and self.fetcher is not None and self.fetcher.paused:
            status = 'paused'
        self._publish_snapshot(self._display_data(status, result))

    def _display_data(self, status: str, result: Optional[SessionTick] = None) -> Dict[str, Any]:
        with self._state_lock:
            snapshot = self._last_snapshot
            zone = self._current_zone
            mode = self._current_mode
            last = self._last_utterance
            distance = self._distance

        next_curve = None
        for curve in self.get_curves():
            if curve.distance_from_start > distance:
                next_curve = {
                    'direction': curve.direction.value,
                    'severity': curve.severity,
                    'angle': round(curve.angle),
                    'distance_m': round(curve.distance_from_start - distance),
                }
                break

        budget = result.budget if result else None
        return {
            'status': status,
            'lat': snapshot.lat if snapshot else None,
            'lon': snapshot.lon if snapshot else None,
            'heading': snapshot.heading if snapshot else None,
            'speed_mph': snapshot.speed_mph if snapshot else 0.0,
            'distance_m': distance,
            'mode': mode.value if mode else None,
            'zone': zone.character.value if zone else None,
            'next_curve': next_curve,
            'budget_s': budget.budget_seconds if budget else None,
            'last_callout': last.text if last else None,
            'stats': self.planner.get_stats(),
        }

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def get_geometry(self) -> Tuple[Tuple[float, float], ...]:
        """Route polyline, or the latest lookahead polyline in free drive."""
        with self._state_lock:
            if self.is_route_mode:
                return self._route_points
            return self._lookahead.points if self._lookahead else ()

    def get_curves(self) -> Tuple[Curve, ...]:
        with self._state_lock:
            if self.is_route_mode:
                return self._route_curves
            return self._lookahead_curves

    def get_current_zone(self) -> Optional[Zone]:
        with self._state_lock:
            return self._current_zone

    def get_zones(self) -> Tuple[Zone, ...]:
        with self._state_lock:
            return self._zones

    def get_planner_stats(self) -> Dict[str, Any]:
        return self.planner.get_stats()

    def get_distance(self) -> float:
        with self._state_lock:
            return self._distance
