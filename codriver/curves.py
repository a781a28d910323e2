"""
Curve detection from road geometry.

Walks a polyline, measures the heading change at every interior vertex and
groups the significant ones into discrete curves:

1. Raw turns - any vertex whose heading change reaches the noise threshold
2. Same-direction merge - consecutive raw turns close together with the same
   sign become one curve; their angles are summed
3. Filtering - merged curves still below the minimum angle are dropped
4. Chicanes - opposite-direction curves separated by a short gap are joined
   into a single chicane event

Each curve also carries its arc length, an estimated radius and, where the
shape deserves a word of its own, a modifier (hairpin, sharp, long).
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .geometry import (
    _get_lat_lon,
    angle_difference,
    bearing,
    cumulative_distances,
    haversine_distance,
)
from utils.settings import parse_bool
from config import (
    CODRIVER_CHICANE_MAX_GAP_M,
    CODRIVER_CURVE_MERGE_DISTANCE_M,
    CODRIVER_CURVE_MIN_ANGLE_DEG,
    CODRIVER_CURVE_NOISE_DEG,
    CODRIVER_HAIRPIN_ANGLE_DEG,
    CODRIVER_LONG_CURVE_M,
    CODRIVER_LONG_HARD_CURVE_M,
    CODRIVER_SHARP_ANGLE_DEG,
    CODRIVER_SHARP_RADIUS_M,
)

logger = logging.getLogger('tramo.curves')

# Consecutive vertices closer than this are treated as duplicates (metres)
_DUPLICATE_POINT_M = 0.05


class Direction(Enum):
    LEFT = "left"
    RIGHT = "right"

    @property
    def opposite(self) -> "Direction":
        return Direction.RIGHT if self is Direction.LEFT else Direction.LEFT


# Rally severity scale based on total angle turned:
# 1 = hairpin (>= 180 deg)
# 2 = very tight (120-180)
# 3 = tight (80-120)
# 4 = medium (60-80)
# 5 = fast (40-60)
# 6 = slight (20-40)
# 7 = flat (< 20)

ANGLE_SEVERITY = [
    (180, 1),
    (120, 2),
    (80, 3),
    (60, 4),
    (40, 5),
    (20, 6),
]


def classify_severity(angle: float) -> int:
    """Convert an absolute turn angle to rally severity (1-7)."""
    for threshold, severity in ANGLE_SEVERITY:
        if angle >= threshold:
            return severity
    return 7


def curve_id(lat: float, lon: float, direction: Direction) -> str:
    """Stable identifier for a curve: rounded apex position plus direction."""
    return f"{lat:.4f},{lon:.4f}:{direction.value}"


class CurveModifier(Enum):
    HAIRPIN = "hairpin"
    SHARP = "sharp"
    LONG = "long"


def estimate_radius(length: float, angle: float) -> float:
    """Radius of a circular arc of this length turning angle degrees (inf if straight)."""
    if angle <= 0:
        return math.inf
    return length / math.radians(angle)


def classify_modifier(angle: float, severity: int, length: float, radius: float) -> Optional[CurveModifier]:
    """
    Extra word for a curve whose shape the severity alone undersells.

    Checked in order: hairpin (angle), sharp (angle or a tight radius), then
    long (a medium or harder curve over the hard-curve length, or any curve
    over the long-curve length).
    """
    if angle > CODRIVER_HAIRPIN_ANGLE_DEG:
        return CurveModifier.HAIRPIN
    if angle > CODRIVER_SHARP_ANGLE_DEG or radius < CODRIVER_SHARP_RADIUS_M:
        return CurveModifier.SHARP
    if length > CODRIVER_LONG_HARD_CURVE_M and severity <= 4:
        return CurveModifier.LONG
    if length > CODRIVER_LONG_CURVE_M:
        return CurveModifier.LONG
    return None


@dataclass(frozen=True)
class Curve:
    """
    A detected curve.

    Attributes:
        id: Rounded apex position plus direction, see curve_id().
        lat: Apex latitude in decimal degrees.
        lon: Apex longitude in decimal degrees.
        direction: LEFT or RIGHT. For chicanes, the entry direction.
        angle: Absolute degrees turned. For chicanes, the sharpest member.
        severity: Rally severity from 1 (hairpin) to 7 (flat).
        distance_from_start: Metres from the polyline start to the first
            vertex of the curve.
        end_distance: Metres from the polyline start to the last vertex of
            the curve.
        is_chicane: True if this joins two opposite-direction curves.
        chicane_members: The joined curves, in order. Empty otherwise.
        length: Arc length in metres, half of each adjoining segment
            included. For chicanes, both members plus the gap between them.
        radius: Estimated radius in metres (length over angle in radians).
        modifier: HAIRPIN, SHARP or LONG, or None.
    """

    id: str
    lat: float
    lon: float
    direction: Direction
    angle: float
    severity: int
    distance_from_start: float
    end_distance: float
    is_chicane: bool = False
    chicane_members: Tuple["Curve", ...] = ()
    length: float = 0.0
    radius: float = math.inf
    modifier: Optional[CurveModifier] = None

    @property
    def exit_direction(self) -> Direction:
        if self.is_chicane and self.chicane_members:
            return self.chicane_members[-1].direction
        return self.direction

    def shifted(self, offset: float) -> "Curve":
        """Copy of this curve with all distances moved by offset metres."""
        return Curve(
            id=self.id,
            lat=self.lat,
            lon=self.lon,
            direction=self.direction,
            angle=self.angle,
            severity=self.severity,
            distance_from_start=self.distance_from_start + offset,
            end_distance=self.end_distance + offset,
            is_chicane=self.is_chicane,
            chicane_members=tuple(m.shifted(offset) for m in self.chicane_members),
            length=self.length,
            radius=self.radius,
            modifier=self.modifier,
        )


@dataclass
class _RawTurn:
    index: int
    distance: float
    turn: float  # signed degrees, positive = right


class CurveDetector:
    """
    Detect curves in a polyline by heading change.

    Deterministic: the same polyline always gives the same curves, in
    ascending distance order, with no two curves overlapping.
    """

    def __init__(
        self,
        noise_threshold: float = CODRIVER_CURVE_NOISE_DEG,
        merge_distance: float = CODRIVER_CURVE_MERGE_DISTANCE_M,
        min_angle: float = CODRIVER_CURVE_MIN_ANGLE_DEG,
        merge_chicanes: bool = True,
        max_chicane_gap: float = CODRIVER_CHICANE_MAX_GAP_M,
    ):
        self.noise_threshold = noise_threshold
        self.merge_distance = merge_distance
        self.min_angle = min_angle
        self.merge_chicanes = merge_chicanes
        self.max_chicane_gap = max_chicane_gap

    @classmethod
    def from_settings(cls, settings) -> "CurveDetector":
        """Build a detector using any "curves.*" overrides from settings."""
        merge_chicanes = settings.get("curves.merge_chicanes", True)
        try:
            merge_chicanes = parse_bool(merge_chicanes)
        except ValueError:
            logger.warning("Invalid value for curves.merge_chicanes: %r", merge_chicanes)
            merge_chicanes = True
        return cls(
            noise_threshold=float(settings.get("curves.noise_threshold", CODRIVER_CURVE_NOISE_DEG)),
            merge_distance=float(settings.get("curves.merge_distance", CODRIVER_CURVE_MERGE_DISTANCE_M)),
            min_angle=float(settings.get("curves.min_angle", CODRIVER_CURVE_MIN_ANGLE_DEG)),
            merge_chicanes=merge_chicanes,
            max_chicane_gap=float(settings.get("curves.max_chicane_gap", CODRIVER_CHICANE_MAX_GAP_M)),
        )

    def detect_curves(
        self,
        points: Sequence,
        start_distance: float = 0.0,
    ) -> List[Curve]:
        """
        Detect all curves in a polyline.

        Args:
            points: Ordered (lat, lon) points (or objects with .lat/.lon)
            start_distance: Distance offset for the first point

        Returns:
            Curves sorted by distance_from_start; empty for fewer than 3 points
        """
        coords = self._drop_duplicates(points)
        if len(coords) < 3:
            return []

        distances = [d + start_distance for d in cumulative_distances(coords)]

        raw = self._raw_turns(coords, distances)
        groups = self._merge_turns(raw)

        curves = []
        for group in groups:
            curve = self._group_to_curve(group, coords, distances)
            if curve is not None:
                curves.append(curve)

        if self.merge_chicanes:
            curves = self._merge_chicanes(curves)

        logger.debug(
            "Detected %d curves from %d points (%d raw turns)",
            len(curves), len(coords), len(raw),
        )
        return curves

    def _drop_duplicates(self, points: Sequence) -> List[Tuple[float, float]]:
        """Convert to (lat, lon) tuples, dropping repeated vertices."""
        coords: List[Tuple[float, float]] = []
        for p in points:
            lat, lon = _get_lat_lon(p)
            if coords:
                last = coords[-1]
                if haversine_distance(last[0], last[1], lat, lon) < _DUPLICATE_POINT_M:
                    continue
            coords.append((lat, lon))
        return coords

    def _raw_turns(
        self, coords: List[Tuple[float, float]], distances: List[float]
    ) -> List[_RawTurn]:
        """Heading change at each interior vertex, kept when above noise."""
        bearings = [
            bearing(coords[i][0], coords[i][1], coords[i + 1][0], coords[i + 1][1])
            for i in range(len(coords) - 1)
        ]

        turns = []
        for i in range(1, len(coords) - 1):
            turn = angle_difference(bearings[i - 1], bearings[i])
            if abs(turn) >= self.noise_threshold:
                turns.append(_RawTurn(index=i, distance=distances[i], turn=turn))
        return turns

    def _merge_turns(self, raw: List[_RawTurn]) -> List[List[_RawTurn]]:
        """Group consecutive raw turns of the same sign within merge distance."""
        groups: List[List[_RawTurn]] = []
        for turn in raw:
            if groups:
                last = groups[-1][-1]
                same_sign = (turn.turn > 0) == (last.turn > 0)
                if same_sign and turn.distance - last.distance <= self.merge_distance:
                    groups[-1].append(turn)
                    continue
            groups.append([turn])
        return groups

    def _group_to_curve(
        self,
        group: List[_RawTurn],
        coords: List[Tuple[float, float]],
        distances: List[float],
    ) -> Optional[Curve]:
        total = sum(t.turn for t in group)
        angle = abs(total)
        if angle < self.min_angle:
            return None

        apex = max(group, key=lambda t: abs(t.turn))
        apex_lat, apex_lon = coords[apex.index]
        direction = Direction.RIGHT if total > 0 else Direction.LEFT
        severity = classify_severity(angle)

        # Turn vertices are interior, so both neighbours exist
        first, last = group[0].index, group[-1].index
        length = (
            distances[last] - distances[first]
            + (distances[first] - distances[first - 1]) / 2
            + (distances[last + 1] - distances[last]) / 2
        )
        radius = estimate_radius(length, angle)

        return Curve(
            id=curve_id(apex_lat, apex_lon, direction),
            lat=apex_lat,
            lon=apex_lon,
            direction=direction,
            angle=angle,
            severity=severity,
            distance_from_start=distances[first],
            end_distance=distances[last],
            length=length,
            radius=radius,
            modifier=classify_modifier(angle, severity, length, radius),
        )

    def _merge_chicanes(self, curves: List[Curve]) -> List[Curve]:
        """
        Join consecutive opposite-direction curves into chicanes.

        A chicane takes the entry curve's direction, the sharpest member's
        angle and severity, and the apex, radius and modifier of the sharper
        member.
        """
        if len(curves) < 2:
            return curves

        merged = []
        i = 0
        while i < len(curves):
            current = curves[i]
            if i + 1 < len(curves):
                nxt = curves[i + 1]
                gap = nxt.distance_from_start - current.end_distance
                if nxt.direction != current.direction and gap <= self.max_chicane_gap:
                    sharper = current if current.angle >= nxt.angle else nxt
                    merged.append(Curve(
                        id=curve_id(sharper.lat, sharper.lon, current.direction),
                        lat=sharper.lat,
                        lon=sharper.lon,
                        direction=current.direction,
                        angle=sharper.angle,
                        severity=min(current.severity, nxt.severity),
                        distance_from_start=current.distance_from_start,
                        end_distance=nxt.end_distance,
                        is_chicane=True,
                        chicane_members=(current, nxt),
                        length=current.length + max(0.0, gap) + nxt.length,
                        radius=sharper.radius,
                        modifier=sharper.modifier,
                    ))
                    i += 2
                    continue
            merged.append(current)
            i += 1
        return merged


def expand_chicanes(curves: Sequence[Curve]) -> List[Curve]:
    """Replace each chicane with its member curves, keeping order."""
    expanded: List[Curve] = []
    for curve in curves:
        if curve.is_chicane and curve.chicane_members:
            expanded.extend(curve.chicane_members)
        else:
            expanded.append(curve)
    return expanded
