"""In-session drive statistics, per road and per zone."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .curves import Curve
from utils.conversions import metres_to_miles

_UNNAMED_ROAD = "unnamed road"


@dataclass
class RoadStats:
    distance_m: float = 0.0
    samples: int = 0
    top_speed: float = 0.0
    speed_total: float = 0.0

    @property
    def avg_speed(self) -> float:
        return self.speed_total / self.samples if self.samples else 0.0

    def add(self, distance_m: float, speed_mph: float):
        self.distance_m += distance_m
        self.samples += 1
        self.speed_total += speed_mph
        self.top_speed = max(self.top_speed, speed_mph)


@dataclass
class ZoneStats:
    distance_m: float = 0.0
    time_s: float = 0.0
    callouts: int = 0


@dataclass
class DriveStats:
    """
    Accumulates what happened during one drive.

    Nothing is persisted; a new instance is made for every session.
    """

    start_time: Optional[float] = None
    last_time: Optional[float] = None
    distance_m: float = 0.0
    drive_time_s: float = 0.0
    overall: RoadStats = field(default_factory=RoadStats)
    roads: Dict[str, RoadStats] = field(default_factory=dict)
    zones: Dict[str, ZoneStats] = field(default_factory=dict)
    hardest_curve: Optional[Curve] = None
    callouts: int = 0

    def record(
        self,
        distance_delta_m: float,
        speed_mph: float,
        road_name: Optional[str] = None,
        zone_id: Optional[str] = None,
        now: Optional[float] = None,
    ):
        """
        Add one telemetry sample.

        Args:
            distance_delta_m: Distance travelled since the previous sample
            speed_mph: Current speed
            road_name: Road being driven, if known
            zone_id: Zone being driven, if any
            now: Monotonic time of the sample
        """
        distance_delta_m = max(0.0, distance_delta_m)
        elapsed = 0.0
        if now is not None:
            if self.start_time is None:
                self.start_time = now
            if self.last_time is not None:
                elapsed = max(0.0, now - self.last_time)
            self.last_time = now

        self.distance_m += distance_delta_m
        self.drive_time_s += elapsed
        self.overall.add(distance_delta_m, speed_mph)

        road = road_name or _UNNAMED_ROAD
        self.roads.setdefault(road, RoadStats()).add(distance_delta_m, speed_mph)

        if zone_id:
            zone = self.zones.setdefault(zone_id, ZoneStats())
            zone.distance_m += distance_delta_m
            zone.time_s += elapsed

    def record_callout(self, zone_id: Optional[str] = None, curve: Optional[Curve] = None):
        """Count a spoken curve callout (and keep the sharpest one)."""
        self.callouts += 1
        if zone_id:
            self.zones.setdefault(zone_id, ZoneStats()).callouts += 1
        if curve is not None and (self.hardest_curve is None or curve.angle > self.hardest_curve.angle):
            self.hardest_curve = curve

    def summary(self) -> Dict[str, Any]:
        hardest = None
        if self.hardest_curve is not None:
            hardest = {
                'angle': round(self.hardest_curve.angle),
                'direction': self.hardest_curve.direction.value,
                'miles': round(metres_to_miles(self.hardest_curve.distance_from_start), 1),
            }
        return {
            'drive_time_s': round(self.drive_time_s, 1),
            'distance_miles': round(metres_to_miles(self.distance_m), 2),
            'avg_speed_mph': round(self.overall.avg_speed, 1),
            'top_speed_mph': round(self.overall.top_speed, 1),
            'roads': sorted(self.roads, key=lambda name: -self.roads[name].distance_m),
            'callouts': self.callouts,
            'zones': {
                zone_id: {
                    'miles': round(metres_to_miles(z.distance_m), 2),
                    'time_s': round(z.time_s, 1),
                    'callouts': z.callouts,
                }
                for zone_id, z in self.zones.items()
            },
            'hardest_curve': hardest,
        }
