"""
Zone classification from curve patterns.

Splits a route into technical / transit / urban zones. Technical zones come
from two deterministic rules: a single severe ("danger") curve, or a window
dense with meaningful curves. Everything between them is transit. Optional
population-density data can mark the route's start and end as urban, which
always wins there.

The result always partitions [0, total_distance]: contiguous, ordered,
no overlaps, no two neighbours with the same character.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from .curves import Curve, expand_chicanes
from utils.conversions import miles_to_metres
from utils.settings import section_overrides
from config import (
    CODRIVER_ZONE_CLUSTER_WINDOW_MI,
    CODRIVER_ZONE_DANGER_ANGLE_DEG,
    CODRIVER_ZONE_DANGER_BUFFER_MI,
    CODRIVER_ZONE_MAX_URBAN_MI,
    CODRIVER_ZONE_MERGE_GAP_MI,
    CODRIVER_ZONE_MIN_ANGLE_DEG,
    CODRIVER_ZONE_MIN_AVG_ANGLE_DEG,
    CODRIVER_ZONE_MIN_CLUSTER_CURVES,
    CODRIVER_ZONE_MIN_TECHNICAL_MI,
)

logger = logging.getLogger('tramo.zones')

# Zones shorter than this are rounding leftovers and are dropped (metres)
_MIN_ZONE_LENGTH_M = 1e-6


class ZoneCharacter(Enum):
    TECHNICAL = "technical"
    TRANSIT = "transit"
    URBAN = "urban"


@dataclass(frozen=True)
class Zone:
    """A stretch of route with one driving character. Distances in metres."""

    start_distance: float
    end_distance: float
    character: ZoneCharacter
    reason: str = ""

    @property
    def zone_id(self) -> str:
        return f"{self.character.value}-{int(self.start_distance)}"

    @property
    def length(self) -> float:
        return self.end_distance - self.start_distance

    def contains(self, distance: float) -> bool:
        return self.start_distance <= distance < self.end_distance


@dataclass(frozen=True)
class DensitySegment:
    """Externally supplied population-density classification of a stretch."""

    start_distance: float
    end_distance: float
    character: ZoneCharacter


@dataclass
class ZoneConfig:
    """
    Classifier thresholds. These are tuning values, not semantics.

    Distances are metres; defaults come from the mile values in config.py.
    """

    min_angle: float = CODRIVER_ZONE_MIN_ANGLE_DEG
    cluster_window_m: float = miles_to_metres(CODRIVER_ZONE_CLUSTER_WINDOW_MI)
    min_curves_for_cluster: int = CODRIVER_ZONE_MIN_CLUSTER_CURVES
    min_avg_angle: float = CODRIVER_ZONE_MIN_AVG_ANGLE_DEG
    danger_angle: float = CODRIVER_ZONE_DANGER_ANGLE_DEG
    danger_buffer_m: float = miles_to_metres(CODRIVER_ZONE_DANGER_BUFFER_MI)
    merge_gap_m: float = miles_to_metres(CODRIVER_ZONE_MERGE_GAP_MI)
    min_technical_length_m: float = miles_to_metres(CODRIVER_ZONE_MIN_TECHNICAL_MI)
    max_urban_length_m: float = miles_to_metres(CODRIVER_ZONE_MAX_URBAN_MI)

    @classmethod
    def from_settings(cls, settings) -> "ZoneConfig":
        """Defaults overridden by the "zones" section of the settings file."""
        return cls(**section_overrides(settings, "zones", cls))


@dataclass
class _Candidate:
    start: float
    end: float
    curve_count: int
    max_angle: float
    reason: str


class ZoneClassifier:
    """Pattern-based zone classifier."""

    def __init__(self, config: Optional[ZoneConfig] = None):
        self.config = config or ZoneConfig()

    def classify(
        self,
        curves: Sequence[Curve],
        total_distance: float,
        density_segments: Optional[Sequence[DensitySegment]] = None,
    ) -> List[Zone]:
        """
        Classify a whole route.

        Args:
            curves: All curves on the route (chicanes are expanded)
            total_distance: Route length in metres
            density_segments: Optional ordered density data for the route

        Returns:
            Zones covering [0, total_distance]; empty if total_distance <= 0
        """
        if not total_distance or total_distance <= 0:
            return []

        meaningful = self._meaningful_curves(curves, total_distance)

        candidates = self._danger_candidates(meaningful, total_distance)
        candidates += self._cluster_candidates(meaningful)
        technical = self._merge_candidates(candidates, total_distance)

        zones = self._fill_transit(technical, total_distance)

        if density_segments:
            zones = self._apply_urban(zones, density_segments, total_distance)

        zones = self._merge_adjacent(zones)

        logger.info(
            "Classified %.1f km route into %d zones (%d technical)",
            total_distance / 1000.0,
            len(zones),
            sum(1 for z in zones if z.character is ZoneCharacter.TECHNICAL),
        )
        return zones

    def _meaningful_curves(self, curves: Sequence[Curve], total: float) -> List[Curve]:
        kept = [
            c for c in expand_chicanes(curves)
            if c.angle >= self.config.min_angle
        ]
        kept.sort(key=lambda c: c.distance_from_start)
        return [c for c in kept if 0.0 <= c.distance_from_start <= total]

    def _danger_candidates(self, curves: List[Curve], total: float) -> List[_Candidate]:
        buffer = self.config.danger_buffer_m
        return [
            _Candidate(
                start=max(0.0, c.distance_from_start - buffer),
                end=min(total, c.distance_from_start + buffer),
                curve_count=1,
                max_angle=c.angle,
                reason=f"danger curve {round(c.angle)}°",
            )
            for c in curves
            if c.angle >= self.config.danger_angle
        ]

    def _cluster_candidates(self, curves: List[Curve]) -> List[_Candidate]:
        """Window from each curve; a dense enough window becomes a candidate."""
        window = self.config.cluster_window_m
        candidates = []

        i = 0
        while i < len(curves):
            window_end = curves[i].distance_from_start + window
            j = i
            while j < len(curves) and curves[j].distance_from_start <= window_end:
                j += 1
            members = curves[i:j]

            if len(members) >= self.config.min_curves_for_cluster:
                avg_angle = sum(c.angle for c in members) / len(members)
                if avg_angle >= self.config.min_avg_angle:
                    candidates.append(_Candidate(
                        start=members[0].distance_from_start,
                        end=members[-1].distance_from_start,
                        curve_count=len(members),
                        max_angle=max(c.angle for c in members),
                        reason=f"{len(members)} curves, avg {round(avg_angle)}°",
                    ))
                    # Resume after the window so clusters don't overlap
                    i = j
                    continue
            i += 1

        return candidates

    def _merge_candidates(self, candidates: List[_Candidate], total: float) -> List[_Candidate]:
        if not candidates:
            return []

        ordered = sorted(candidates, key=lambda c: (c.start, c.end))
        merged = [ordered[0]]
        for cand in ordered[1:]:
            last = merged[-1]
            if cand.start <= last.end + self.config.merge_gap_m:
                last.end = max(last.end, cand.end)
                last.curve_count += cand.curve_count
                last.max_angle = max(last.max_angle, cand.max_angle)
                last.reason = f"merged: {last.curve_count} curves, max {round(last.max_angle)}°"
            else:
                merged.append(_Candidate(
                    cand.start, cand.end, cand.curve_count, cand.max_angle, cand.reason
                ))

        for cand in merged:
            cand.start = max(0.0, cand.start)
            cand.end = min(total, cand.end)

        return [
            c for c in merged
            if c.end - c.start >= self.config.min_technical_length_m
        ]

    def _fill_transit(self, technical: List[_Candidate], total: float) -> List[Zone]:
        if not technical:
            return [Zone(0.0, total, ZoneCharacter.TRANSIT, "no technical sections")]

        zones: List[Zone] = []
        cursor = 0.0
        for tech in technical:
            if tech.start > cursor:
                reason = "before technical" if not zones else "between technical"
                zones.append(Zone(cursor, tech.start, ZoneCharacter.TRANSIT, reason))
            start = max(cursor, tech.start)
            zones.append(Zone(start, tech.end, ZoneCharacter.TECHNICAL, tech.reason))
            cursor = tech.end

        if cursor < total:
            zones.append(Zone(cursor, total, ZoneCharacter.TRANSIT, "after technical"))
        return zones

    def _apply_urban(
        self,
        zones: List[Zone],
        segments: Sequence[DensitySegment],
        total: float,
    ) -> List[Zone]:
        """Urban density at the route start or end overrides computed zones."""
        cap = self.config.max_urban_length_m

        first = segments[0]
        if first.character is ZoneCharacter.URBAN:
            end = min(first.end_distance, cap, total)
            if end > 0:
                zones = _overlay(zones, 0.0, end, ZoneCharacter.URBAN, "route start (density)")

        last = segments[-1]
        if last.character is ZoneCharacter.URBAN:
            start = max(last.start_distance, total - cap, 0.0)
            if start < total:
                zones = _overlay(zones, start, total, ZoneCharacter.URBAN, "route end (density)")

        return zones

    def _merge_adjacent(self, zones: List[Zone]) -> List[Zone]:
        merged: List[Zone] = []
        for zone in zones:
            if zone.length <= _MIN_ZONE_LENGTH_M:
                continue
            if merged and merged[-1].character is zone.character:
                prev = merged[-1]
                merged[-1] = Zone(prev.start_distance, zone.end_distance, prev.character, prev.reason)
            else:
                merged.append(zone)
        return merged


def _overlay(
    zones: List[Zone],
    start: float,
    end: float,
    character: ZoneCharacter,
    reason: str,
) -> List[Zone]:
    """Paint [start, end] with one character, trimming whatever was there."""
    painted = Zone(start, end, character, reason)
    result: List[Zone] = []
    inserted = False

    for zone in zones:
        if zone.end_distance <= start:
            result.append(zone)
            continue
        if zone.start_distance >= end:
            if not inserted:
                result.append(painted)
                inserted = True
            result.append(zone)
            continue

        if zone.start_distance < start:
            result.append(Zone(zone.start_distance, start, zone.character, zone.reason))
        if not inserted:
            result.append(painted)
            inserted = True
        if zone.end_distance > end:
            result.append(Zone(end, zone.end_distance, zone.character, zone.reason))

    if not inserted:
        result.append(painted)
    return result


def zone_at(zones: Sequence[Zone], distance: float) -> Optional[Zone]:
    """
    Zone containing a distance along the route.

    Before the start gives the first zone, at or past the end gives the last.
    """
    if not zones:
        return None
    if distance < zones[0].start_distance:
        return zones[0]
    for zone in zones:
        if zone.contains(distance):
            return zone
    return zones[-1]


def curves_in_zone(curves: Sequence[Curve], zone: Zone) -> List[Curve]:
    """Curves whose start falls inside a zone, in distance order."""
    return sorted(
        (c for c in curves if zone.start_distance <= c.distance_from_start < zone.end_distance),
        key=lambda c: c.distance_from_start,
    )
