"""Simulation mode for testing without GPS hardware."""

import logging
import time
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .geometry import _get_lat_lon, bearing, haversine_distance
from .gps import TelemetrySnapshot
from utils.conversions import mph_to_mps
from config import CODRIVER_SIM_MAX_DT_S, CODRIVER_SIM_SPEED_MPH

logger = logging.getLogger('tramo.simulator')

GPX_NS = {'gpx': 'http://www.topografix.com/GPX/1/1'}


class RouteSimulator:
    """
    Drives along a polyline at a set speed, producing telemetry snapshots.

    advance(dt) moves a fixed time step and is fully deterministic;
    read_position() advances by the wall-clock time since the last read,
    capped so a stall never teleports the car.
    """

    def __init__(
        self,
        points: Sequence,
        speed_mph: float = CODRIVER_SIM_SPEED_MPH,
        clock=time.monotonic,
        max_dt: float = CODRIVER_SIM_MAX_DT_S,
    ):
        self._route_points: List[Tuple[float, float]] = [_get_lat_lon(p) for p in points]
        if not self._route_points:
            raise ValueError("Simulator needs at least one route point")
        self.speed_mph = speed_mph
        self._clock = clock
        self.max_dt = max_dt

        self.current_lat, self.current_lon = self._route_points[0]
        self.current_heading = self._initial_heading()
        self._route_index = 0
        self._distance_travelled = 0.0
        self._sim_time = 0.0
        self._last_update: Optional[float] = None

    def _initial_heading(self) -> float:
        if len(self._route_points) < 2:
            return 0.0
        a, b = self._route_points[0], self._route_points[1]
        return bearing(a[0], a[1], b[0], b[1])

    def connect(self) -> None:
        """Reset the wall clock so the first read doesn't jump."""
        self._last_update = self._clock()
        logger.info(
            "Simulator ready at %.4f, %.4f, heading %.0f, %d route points",
            self.current_lat, self.current_lon, self.current_heading, len(self._route_points),
        )

    def disconnect(self) -> None:
        self._last_update = None

    def set_speed(self, speed_mph: float) -> None:
        self.speed_mph = max(0.0, speed_mph)

    @property
    def finished(self) -> bool:
        return self._route_index >= len(self._route_points) - 1

    @property
    def distance_travelled(self) -> float:
        return self._distance_travelled

    def read_position(self) -> Optional[TelemetrySnapshot]:
        """Advance by elapsed wall time and return the new position."""
        now = self._clock()
        dt = 0.0 if self._last_update is None else now - self._last_update
        self._last_update = now
        return self.advance(min(max(dt, 0.0), self.max_dt))

    def advance(self, dt: float) -> TelemetrySnapshot:
        """Move dt seconds along the route."""
        self._sim_time += dt
        distance_to_travel = mph_to_mps(self.speed_mph) * dt

        while distance_to_travel > 0 and not self.finished:
            next_pt = self._route_points[self._route_index + 1]

            dist_to_next = haversine_distance(
                self.current_lat, self.current_lon, next_pt[0], next_pt[1]
            )

            if distance_to_travel >= dist_to_next:
                distance_to_travel -= dist_to_next
                self._distance_travelled += dist_to_next
                self._route_index += 1
                self.current_lat, self.current_lon = next_pt
            else:
                fraction = distance_to_travel / dist_to_next if dist_to_next > 0 else 0
                self.current_lat = self.current_lat + fraction * (next_pt[0] - self.current_lat)
                self.current_lon = self.current_lon + fraction * (next_pt[1] - self.current_lon)
                self._distance_travelled += distance_to_travel
                distance_to_travel = 0

            if not self.finished:
                next_pt = self._route_points[self._route_index + 1]
                self.current_heading = bearing(
                    self.current_lat, self.current_lon, next_pt[0], next_pt[1]
                )

        return TelemetrySnapshot(
            lat=self.current_lat,
            lon=self.current_lon,
            heading=self.current_heading,
            speed_mph=0.0 if self.finished else self.speed_mph,
            timestamp=self._sim_time,
        )


class GPXRouteLoader:
    """Load a route from a GPX file."""

    def __init__(self, gpx_path: str):
        """
        Args:
            gpx_path: Path to GPX file
        """
        self.gpx_path = Path(gpx_path)
        self._route_points: List[Tuple[float, float]] = []
        self._loaded = False

    def load(self) -> bool:
        """Load the GPX file. Returns True if any points were found."""
        self._route_points = self._parse_gpx()
        self._loaded = len(self._route_points) > 0
        if self._loaded:
            logger.info("Loaded %d points from %s", len(self._route_points), self.gpx_path)
        return self._loaded

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def points(self) -> List[Tuple[float, float]]:
        return list(self._route_points)

    @property
    def point_count(self) -> int:
        return len(self._route_points)

    def get_route_bounds(self) -> Optional[Tuple[float, float, float, float]]:
        """Bounds of the route (min_lat, max_lat, min_lon, max_lon)."""
        if not self._route_points:
            return None
        lats = [p[0] for p in self._route_points]
        lons = [p[1] for p in self._route_points]
        return (min(lats), max(lats), min(lons), max(lons))

    def _parse_gpx(self) -> List[Tuple[float, float]]:
        """Track points (trk/trkseg/trkpt), falling back to route points (rte/rtept)."""
        points: List[Tuple[float, float]] = []

        try:
            root = ET.parse(self.gpx_path).getroot()

            for path in ('.//gpx:trkpt', './/gpx:rtept', './/trkpt', './/rtept'):
                if points:
                    break
                for pt in root.findall(path, GPX_NS):
                    points.append((float(pt.get('lat')), float(pt.get('lon'))))

        except ET.ParseError as e:
            logger.warning("Error parsing GPX file %s: %s", self.gpx_path, e)
            return []
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Error reading GPX file %s: %s", self.gpx_path, e)
            return []

        return points
