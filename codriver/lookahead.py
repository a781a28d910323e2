"""
Lookahead fetcher: keeps road geometry ahead of the vehicle up to date.

Each update() reads one telemetry snapshot and decides whether to ask the
routing service for a fresh stretch of road. Fetching:
- starts immediately on the first snapshot
- then repeats at most every min_interval_s, unless the vehicle has moved
  or turned enough, or wandered off the cached geometry, to justify an
  immediate refetch
- pauses entirely below min_speed_mph
- never overlaps: a tick arriving while a fetch is in flight is dropped

The request target is projected ahead along the last reliable heading.
GPS heading is noise at crawling speed, so it is only updated at or above
heading_hold_speed_mph and held otherwise.

Results (polyline, detected curves, road name/class) are returned from
update(), or None for "nothing new this tick". A failed fetch leaves the
previous geometry in place and backs off exponentially.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .curves import Curve, CurveDetector
from .geometry import (
    angle_difference,
    distance_to_polyline,
    haversine_distance,
    point_along_bearing,
)
from .gps import TelemetrySnapshot
from .routing import RouteStep, RoutingError, RoutingService, detect_road_class
from utils.settings import section_overrides
from utils.snapshot_worker import ExponentialBackoff
from config import (
    CODRIVER_FETCH_MIN_INTERVAL_S,
    CODRIVER_FETCH_MIN_SPEED_MPH,
    CODRIVER_HEADING_HOLD_SPEED_MPH,
    CODRIVER_LOOKAHEAD_M,
    CODRIVER_OFF_PATH_M,
    CODRIVER_REFETCH_DISTANCE_M,
    CODRIVER_REFETCH_HEADING_DEG,
    CODRIVER_ROUTING_PROFILE,
)

logger = logging.getLogger('tramo.lookahead')


@dataclass
class LookaheadConfig:
    lookahead_m: float = CODRIVER_LOOKAHEAD_M
    min_interval_s: float = CODRIVER_FETCH_MIN_INTERVAL_S
    refetch_distance_m: float = CODRIVER_REFETCH_DISTANCE_M
    refetch_heading_deg: float = CODRIVER_REFETCH_HEADING_DEG
    off_path_m: float = CODRIVER_OFF_PATH_M
    min_speed_mph: float = CODRIVER_FETCH_MIN_SPEED_MPH
    heading_hold_speed_mph: float = CODRIVER_HEADING_HOLD_SPEED_MPH
    profile: str = CODRIVER_ROUTING_PROFILE

    @classmethod
    def from_settings(cls, settings) -> "LookaheadConfig":
        """Defaults overridden by the "lookahead" section of the settings file."""
        return cls(**section_overrides(settings, "lookahead", cls))


@dataclass(frozen=True)
class LookaheadResult:
    """Geometry fetched ahead of the vehicle; curve distances are from origin."""

    points: Tuple[Tuple[float, float], ...]
    curves: Tuple[Curve, ...]
    road_name: str
    road_class: str
    distance: float
    steps: Tuple[RouteStep, ...]
    origin_lat: float
    origin_lon: float
    heading: float
    fetched_at: float


class LookaheadFetcher:
    """Decides when to refresh the road ahead and runs the fetch."""

    def __init__(
        self,
        routing: RoutingService,
        detector: Optional[CurveDetector] = None,
        config: Optional[LookaheadConfig] = None,
        async_fetch: bool = False,
        backoff: Optional[ExponentialBackoff] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            routing: Routing collaborator used for geometry
            detector: Curve detector run on every fetched polyline
            config: Trigger thresholds
            async_fetch: Run fetches in a background thread; results are
                returned by the next update() after they land
            backoff: Failure backoff (default 1s doubling to 64s)
            clock: Monotonic clock, used when update() gets no explicit time
        """
        self.routing = routing
        self.detector = detector or CurveDetector()
        self.config = config or LookaheadConfig()
        self.async_fetch = async_fetch
        self.backoff = backoff or ExponentialBackoff()
        self._clock = clock

        self._lock = threading.Lock()
        self._fetch_thread: Optional[threading.Thread] = None
        self._sync_in_flight = False
        self._generation = 0
        self._reset_state()

    def _reset_state(self):
        self._pending: Optional[LookaheadResult] = None
        self._latest: Optional[LookaheadResult] = None
        self._reliable_heading: Optional[float] = None
        self._paused = False
        self._last_attempt_time: Optional[float] = None
        self._last_attempt_pos: Optional[Tuple[float, float]] = None
        self._last_attempt_heading: Optional[float] = None
        self.api_calls = 0
        self.dropped_ticks = 0
        self.failures = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(self, snapshot: TelemetrySnapshot, now: Optional[float] = None) -> Optional[LookaheadResult]:
        """
        Process one telemetry snapshot.

        Returns:
            A new LookaheadResult if fresh geometry became available this
            tick, otherwise None
        """
        now = self._clock() if now is None else now
        landed = self._take_pending()

        heading = self._hold_heading(snapshot)

        if snapshot.speed_mph < self.config.min_speed_mph:
            if not self._paused:
                self._paused = True
                logger.info(
                    "Lookahead paused (%.1f mph < %.1f mph)",
                    snapshot.speed_mph, self.config.min_speed_mph,
                )
            return landed
        if self._paused:
            self._paused = False
            logger.info("Lookahead resumed at %.1f mph", snapshot.speed_mph)

        if self.is_fetching:
            self.dropped_ticks += 1
            logger.debug("Fetch in flight, tick dropped")
            return landed

        if self.backoff.should_skip(now):
            return landed

        reason = self._refetch_reason(snapshot, heading, now)
        if reason is None:
            return landed

        logger.debug(
            "Fetching lookahead (%s) from %.5f,%.5f heading %.0f",
            reason, snapshot.lat, snapshot.lon, heading,
        )
        self._last_attempt_time = now
        self._last_attempt_pos = (snapshot.lat, snapshot.lon)
        self._last_attempt_heading = heading

        if self.async_fetch:
            self._start_async(snapshot.lat, snapshot.lon, heading, now)
            return landed

        self._sync_in_flight = True
        try:
            result = self._fetch(snapshot.lat, snapshot.lon, heading, now, self._generation)
        finally:
            self._sync_in_flight = False
        if result is not None:
            self._apply(result)
            return result
        return landed

    @property
    def is_fetching(self) -> bool:
        if self._sync_in_flight:
            return True
        return self._fetch_thread is not None and self._fetch_thread.is_alive()

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def reliable_heading(self) -> Optional[float]:
        return self._reliable_heading

    @property
    def latest(self) -> Optional[LookaheadResult]:
        return self._latest

    def get_state(self) -> Dict[str, Any]:
        """Read-only view of the cached geometry and fetch counters."""
        latest = self._latest
        return {
            'geometry': latest.points if latest else (),
            'curves': latest.curves if latest else (),
            'road_name': latest.road_name if latest else "",
            'road_class': latest.road_class if latest else "",
            'paused': self._paused,
            'fetching': self.is_fetching,
            'api_calls': self.api_calls,
            'dropped_ticks': self.dropped_ticks,
            'failures': self.failures,
            'backoff_s': self.backoff.current_delay,
        }

    def reset(self):
        """Forget all geometry and state. Results of any running fetch are discarded."""
        with self._lock:
            self._generation += 1
            self._reset_state()
            self.backoff.reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _hold_heading(self, snapshot: TelemetrySnapshot) -> float:
        if (self._reliable_heading is None
                or snapshot.speed_mph >= self.config.heading_hold_speed_mph):
            self._reliable_heading = snapshot.heading
        return self._reliable_heading

    def _refetch_reason(self, snapshot: TelemetrySnapshot, heading: float, now: float) -> Optional[str]:
        """Why a fetch is due now, or None if it isn't."""
        if self._last_attempt_time is None:
            return "first fetch"

        moved = haversine_distance(
            self._last_attempt_pos[0], self._last_attempt_pos[1],
            snapshot.lat, snapshot.lon,
        )
        if moved >= self.config.refetch_distance_m:
            return f"moved {moved:.0f}m"

        turned = abs(angle_difference(self._last_attempt_heading, heading))
        if turned >= self.config.refetch_heading_deg:
            return f"turned {turned:.0f}°"

        if self._latest is not None and moved > self.config.off_path_m:
            off = distance_to_polyline(snapshot.lat, snapshot.lon, self._latest.points)
            if off > self.config.off_path_m:
                return f"off path {off:.0f}m"

        if now - self._last_attempt_time >= self.config.min_interval_s:
            return "interval"
        return None

    def _fetch(
        self, lat: float, lon: float, heading: float, now: float, generation: int,
    ) -> Optional[LookaheadResult]:
        """
        Request geometry and detect curves. None on any routing failure.

        Counters and backoff belong to the session that started the fetch:
        once reset() has moved the generation on, a late outcome touches
        neither and the result is dropped.
        """
        target = point_along_bearing(lat, lon, heading, self.config.lookahead_m)
        with self._lock:
            if generation != self._generation:
                return None
            self.api_calls += 1
        try:
            route = self.routing.route((lat, lon), target, self.config.profile)
        except RoutingError as e:
            with self._lock:
                if generation != self._generation:
                    logger.debug("Ignoring failure of a fetch started before reset: %s", e)
                    return None
                self.failures += 1
                self.backoff.record_failure(now)
                delay = self.backoff.current_delay
            logger.warning("Lookahead fetch failed (retry in %.0fs): %s", delay, e)
            return None

        if route is None or len(route.points) < 2:
            logger.warning("No route ahead of %.5f,%.5f, keeping previous geometry", lat, lon)
            return None

        with self._lock:
            if generation != self._generation:
                return None
            self.backoff.record_success()
        curves = self.detector.detect_curves(route.points)
        result = LookaheadResult(
            points=tuple(route.points),
            curves=tuple(curves),
            road_name=route.road_name,
            road_class=detect_road_class(route.steps),
            distance=route.distance,
            steps=tuple(route.steps),
            origin_lat=lat,
            origin_lon=lon,
            heading=heading,
            fetched_at=now,
        )
        logger.info(
            "Lookahead: %d points, %d curves, %s (%s)",
            len(result.points), len(result.curves),
            result.road_name or "unnamed road", result.road_class,
        )
        return result

    def _start_async(self, lat: float, lon: float, heading: float, now: float):
        generation = self._generation

        def fetch_in_background():
            try:
                result = self._fetch(lat, lon, heading, now, generation)
            except Exception as e:
                logger.error("Lookahead fetch error: %s", e, exc_info=True)
                return
            if result is None:
                return
            with self._lock:
                if generation == self._generation:
                    self._pending = result

        self._fetch_thread = threading.Thread(target=fetch_in_background, daemon=True)
        self._fetch_thread.start()

    def _take_pending(self) -> Optional[LookaheadResult]:
        """Apply a result delivered by the background thread, if any."""
        with self._lock:
            result = self._pending
            self._pending = None
        if result is not None:
            self._apply(result)
        return result

    def _apply(self, result: LookaheadResult):
        self._latest = result
