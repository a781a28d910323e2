"""
Callout text for curves, chicanes and zone briefings.

Everything here is a pure function of its inputs: the same mode, curve and
phase always produce the same words. Timing and voice pacing are looked up
per driving mode from TIMING_PROFILES and VOICE_PROFILES.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Sequence, Tuple

from .curves import Curve, Direction
from .zones import Zone, ZoneCharacter
from utils.conversions import format_miles, metres_to_feet, mph_to_mps
from config import CODRIVER_BRIEFING_MIN_BUDGET_S, CODRIVER_CLEAR_MIN_STRAIGHT_M


class DrivingMode(Enum):
    HIGHWAY = "highway"
    SPIRITED = "spirited"
    TECHNICAL = "technical"
    URBAN = "urban"


class CalloutPhase(Enum):
    EARLY = "early"
    MAIN = "main"
    FINAL = "final"
    CLEAR = "clear"


@dataclass(frozen=True)
class TimingProfile:
    """
    When to call curves in one driving mode.

    Attributes:
        base_distance: Reference warning distance (metres); the early call
            opens at base_distance x early_warning_mult.
        min_reaction_time: Seconds of warning the driver always gets.
        early_warning_mult: Early callout distance as a multiple of base.
        final_warning_dist: Final "now" callout distance (metres).
        trigger_seconds: Adaptive trigger is speed times this.
        min_trigger_m: Adaptive trigger floor (metres).
        max_trigger_m: Adaptive trigger ceiling (metres).
        min_callout_angle: Curves gentler than this are not called (degrees).
        chatter_allowed: Whether ambient chatter may be spoken.
    """

    base_distance: float
    min_reaction_time: float
    early_warning_mult: float
    final_warning_dist: float
    trigger_seconds: float
    min_trigger_m: float
    max_trigger_m: float
    min_callout_angle: float
    chatter_allowed: bool


@dataclass(frozen=True)
class VoiceProfile:
    """Speech pacing for one driving mode. rate is relative to normal (1.0)."""

    rate: float
    stability: float
    min_pause_s: float
    style: str


TIMING_PROFILES = {
    DrivingMode.HIGHWAY: TimingProfile(450, 6, 1.8, 150, 6, 150, 500, 20, True),
    DrivingMode.SPIRITED: TimingProfile(250, 5, 1.6, 80, 5, 100, 400, 15, False),
    DrivingMode.TECHNICAL: TimingProfile(120, 3, 1.5, 40, 5, 100, 400, 15, False),
    DrivingMode.URBAN: TimingProfile(80, 3, 1.4, 30, 4, 60, 200, 70, False),
}

VOICE_PROFILES = {
    DrivingMode.HIGHWAY: VoiceProfile(0.9, 0.85, 1.5, "relaxed"),
    DrivingMode.SPIRITED: VoiceProfile(1.0, 0.75, 1.2, "alert"),
    DrivingMode.TECHNICAL: VoiceProfile(1.15, 0.65, 0.8, "rapid"),
    DrivingMode.URBAN: VoiceProfile(0.9, 0.85, 1.5, "casual"),
}

# Severity names (index = severity number)
SEVERITY_NAMES = [
    "",  # 0 - unused
    "hairpin",
    "two",
    "three",
    "four",
    "five",
    "six",
    "flat",
]

# Advisory corner speed by severity (mph), spoken in technical mode
ADVISORY_SPEED_MPH = {1: 15, 2: 20, 3: 30, 4: 40}


# Driver speed relative to expected that counts as pushing / relaxed
PUSHING_RATIO = 1.15
RELAXED_RATIO = 0.85

# Curves this severe or harder get early and final calls as well as the main one
HARD_SEVERITY = 3


@dataclass(frozen=True)
class WarningDistances:
    early: float
    main: float
    final: float


def timing_profile(mode: DrivingMode) -> TimingProfile:
    return TIMING_PROFILES[mode]


def voice_profile_name(mode: DrivingMode) -> str:
    """Name handed to the speech output; resolves back via VOICE_PROFILES."""
    return mode.value


def severity_name(severity: int) -> str:
    if 1 <= severity < len(SEVERITY_NAMES):
        return SEVERITY_NAMES[severity]
    return SEVERITY_NAMES[-1]


def _capitalise(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def curve_phrase(direction: Direction, severity: int) -> str:
    """Rally phrase for one curve, e.g. "left four" or "right hairpin"."""
    return f"{direction.value} {severity_name(severity)}"


def sequence_callout(curves: Sequence[Curve]) -> str:
    """Link curves with "into", e.g. "Left four into right two"."""
    return _capitalise(" into ".join(curve_phrase(c.direction, c.severity) for c in curves))


def adaptive_trigger_distance(mode: DrivingMode, speed_mph: float) -> float:
    """Distance at which a curve becomes due: speed x seconds, clamped per mode."""
    profile = TIMING_PROFILES[mode]
    distance = mph_to_mps(max(speed_mph, 0.0)) * profile.trigger_seconds
    return max(profile.min_trigger_m, min(profile.max_trigger_m, distance))


def adjust_for_speed(
    mode: DrivingMode,
    speed_mph: float,
    expected_speed_mph: Optional[float] = None,
) -> Tuple[TimingProfile, VoiceProfile]:
    """
    Mode profiles nudged for a driver going faster or slower than expected.

    Over PUSHING_RATIO of the expected speed: warnings start earlier and the
    pause between calls shrinks. Under RELAXED_RATIO: warnings come a
    little later and pauses stretch. Without a speed or an
    expectation the mode's profiles are returned unchanged.
    """
    timing = TIMING_PROFILES[mode]
    voice = VOICE_PROFILES[mode]
    if not speed_mph or not expected_speed_mph:
        return timing, voice

    ratio = speed_mph / expected_speed_mph
    if ratio > PUSHING_RATIO:
        timing = replace(timing, base_distance=timing.base_distance * 1.2)
        voice = replace(voice, min_pause_s=voice.min_pause_s * 0.8)
    elif ratio < RELAXED_RATIO:
        timing = replace(timing, base_distance=timing.base_distance * 0.9)
        voice = replace(voice, min_pause_s=voice.min_pause_s * 1.2)
    return timing, voice


def warning_distances(
    mode: DrivingMode,
    speed_mph: float,
    expected_speed_mph: Optional[float] = None,
) -> WarningDistances:
    """
    Distances (metres before the curve) at which each callout phase opens.

    main is the adaptive trigger. early and final scale from the mode's base
    and final distances but never drop below the distance covered in the
    reaction time (x1.5 for early, x0.5 for final).
    """
    profile, _ = adjust_for_speed(mode, speed_mph, expected_speed_mph)
    reaction = mph_to_mps(max(speed_mph, 0.0)) * profile.min_reaction_time
    return WarningDistances(
        early=max(profile.base_distance * profile.early_warning_mult, reaction * 1.5),
        main=adaptive_trigger_distance(mode, speed_mph),
        final=max(profile.final_warning_dist, reaction * 0.5),
    )


def modifier_word(curve: Curve) -> Optional[str]:
    """Spoken modifier, or None when absent or already said by the severity name."""
    if curve.modifier is None:
        return None
    word = curve.modifier.value
    if word == severity_name(curve.severity):
        return None
    return word


def generate_callout(mode: DrivingMode, curve: Curve, phase: CalloutPhase) -> Optional[str]:
    """
    Spoken text for a curve.

    Returns None where the mode does not call this curve at all (gentle
    bends in urban mode), and for CLEAR, which is about the straight after
    a curve (see generate_clear_callout).
    """
    if phase is CalloutPhase.CLEAR:
        return None
    if curve.is_chicane:
        return generate_chicane_callout(mode, curve, phase)

    direction = curve.direction.value
    name = severity_name(curve.severity)
    gentle = curve.severity >= 6
    sharp = curve.severity <= HARD_SEVERITY
    modifier = modifier_word(curve)

    if phase is CalloutPhase.FINAL:
        if sharp:
            return f"{_capitalise(direction)} {name} now!"
        return f"{_capitalise(direction)} now"

    if mode is DrivingMode.URBAN:
        if curve.severity <= 4:
            return f"Sharp {direction}"
        return None

    if mode is DrivingMode.HIGHWAY and gentle:
        return f"Easy {direction} ahead" if phase is CalloutPhase.EARLY else f"Easy {direction}"

    text = f"{_capitalise(direction)} {name}"
    if phase is CalloutPhase.EARLY:
        text += " ahead"
        return f"{text}, {modifier}" if modifier else text

    if mode is DrivingMode.TECHNICAL:
        if modifier:
            text += f" {modifier}"
        if curve.severity in ADVISORY_SPEED_MPH:
            text += f", {ADVISORY_SPEED_MPH[curve.severity]}"
        return text
    return f"{text}, {modifier}" if modifier else text


def generate_clear_callout(mode: DrivingMode, distance_m: float) -> Optional[str]:
    """
    "Clear, 1500 feet": the road is straight until the next curve.

    Technical mode only, and only for a real straight (at least
    CODRIVER_CLEAR_MIN_STRAIGHT_M). Distance is rounded to 500 feet.
    """
    if mode is not DrivingMode.TECHNICAL or distance_m < CODRIVER_CLEAR_MIN_STRAIGHT_M:
        return None
    feet = int(round(metres_to_feet(distance_m) / 500.0)) * 500
    return f"Clear, {feet} feet"


def generate_chicane_callout(mode: DrivingMode, curve: Curve, phase: CalloutPhase) -> str:
    """Chicane text linking each member's direction and severity."""
    members = curve.chicane_members or (curve,)
    entry = members[0].direction.value
    exit_ = members[-1].direction.value
    kind = "Chicane" if min(m.severity for m in members) <= 4 else "S-bend"

    if phase is CalloutPhase.FINAL:
        return f"{kind} {entry} now!"
    if mode is DrivingMode.HIGHWAY:
        return f"{kind} ahead"
    if mode is DrivingMode.URBAN:
        return f"{kind} {entry}-{exit_}"
    return sequence_callout(members)


def mode_for_zone(zone: Optional[Zone]) -> DrivingMode:
    if zone is None:
        return DrivingMode.SPIRITED
    if zone.character is ZoneCharacter.TECHNICAL:
        return DrivingMode.TECHNICAL
    if zone.character is ZoneCharacter.URBAN:
        return DrivingMode.URBAN
    return DrivingMode.HIGHWAY


def mode_for_road_class(road_class: Optional[str]) -> DrivingMode:
    return {
        "highway": DrivingMode.HIGHWAY,
        "technical": DrivingMode.TECHNICAL,
        "urban": DrivingMode.URBAN,
    }.get(road_class or "", DrivingMode.SPIRITED)


def transition_callout(zone: Zone) -> str:
    """Heads-up spoken shortly before a zone boundary."""
    if zone.character is ZoneCharacter.TECHNICAL:
        return "Technical section ahead."
    if zone.character is ZoneCharacter.URBAN:
        return "Urban area ahead. Easing off."
    return "Road opens up ahead."


def build_zone_briefing(
    zone: Optional[Zone],
    upcoming_curves: Sequence[Curve],
    budget_seconds: float,
    zones: Sequence[Zone] = (),
) -> Optional[str]:
    """
    Briefing spoken on entering a zone, scaled to the speech budget.

    - under the minimum budget: nothing
    - under 10s: a headline
    - under 20s: headline plus length and curve count
    - otherwise: a preview of the first curves and what follows the zone

    Args:
        zone: The zone just entered
        upcoming_curves: Curves ahead of the vehicle (any order)
        budget_seconds: Seconds available before the next curve
        zones: The full zone list, used to preview the next technical section
    """
    if zone is None or budget_seconds < CODRIVER_BRIEFING_MIN_BUDGET_S:
        return None

    in_zone = sorted(
        (c for c in upcoming_curves
         if zone.start_distance <= c.distance_from_start <= zone.end_distance),
        key=lambda c: c.distance_from_start,
    )
    length = format_miles(zone.length)
    count = len(in_zone)
    curves_word = "curve" if count == 1 else "curves"

    if zone.character is ZoneCharacter.URBAN:
        return "Urban zone. Watch for traffic."

    if zone.character is ZoneCharacter.TECHNICAL:
        if budget_seconds < 10:
            return "Technical. Stay sharp."
        parts = [f"Technical section. {count} {curves_word} in {length}."]
        if budget_seconds >= 20 and in_zone:
            preview = ", ".join(curve_phrase(c.direction, c.severity) for c in in_zone[:3])
            parts.append(f"Opens with {preview}.")
        parts.append("Stay sharp.")
        return " ".join(parts)

    # Transit
    if budget_seconds < 10:
        return "Open road."
    parts = [f"Open road. {length}."]
    if budget_seconds < 20:
        if count:
            parts.append(f"{count} {curves_word}.")
        return " ".join(parts)

    if not in_zone:
        parts.append("Straight ahead.")
    else:
        parts.append(f"{count} {curves_word} ahead.")
        first = in_zone[0]
        lead = first.distance_from_start - zone.start_distance
        preview = ", then ".join(curve_phrase(c.direction, c.severity) for c in in_zone[:3])
        parts.append(f"First in {format_miles(lead)}: {preview}.")

    next_technical = next(
        (z for z in zones
         if z.start_distance > zone.start_distance and z.character is ZoneCharacter.TECHNICAL),
        None,
    )
    if next_technical is not None:
        parts.append(
            f"Technical in {format_miles(next_technical.start_distance - zone.start_distance)}."
        )
    return " ".join(parts)
