"""
Chatter: low-priority ambient commentary along a route.

A chatter timeline is a list of items, each with a trigger distance and
text variants per speed band. The planner picks one variant when the
vehicle reaches the trigger, and only if the speech budget is generous.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .curves import Curve
from .zones import Zone, ZoneCharacter, curves_in_zone
from utils.conversions import format_miles, metres_to_miles, miles_to_metres
from config import (
    CODRIVER_CHATTER_CRUISE_MPH,
    CODRIVER_CHATTER_MILESTONE_MI,
    CODRIVER_CHATTER_PREVIEW_MIN_MI,
    CODRIVER_CHATTER_SLOW_MPH,
)

SPEED_BANDS = ("slow", "cruise", "fast")

# Items closer together than this are thinned out (metres)
_MIN_SPACING_M = miles_to_metres(1.0)

# Offsets from a zone start / end for preview items (metres)
_PREVIEW_OFFSET_M = 160.0
_EXIT_WARNING_M = miles_to_metres(0.5)


@dataclass(frozen=True)
class ChatterItem:
    id: str
    trigger_distance: float
    text: str = ""
    variants: Dict[str, List[str]] = field(default_factory=dict)


def speed_band(speed_mph: float) -> str:
    if speed_mph <= CODRIVER_CHATTER_SLOW_MPH:
        return "slow"
    if speed_mph <= CODRIVER_CHATTER_CRUISE_MPH:
        return "cruise"
    return "fast"


def pick_variant(item: ChatterItem, speed_mph: float, rng: Optional[random.Random] = None) -> str:
    """
    Choose the text to speak for an item at the current speed.

    Uses the speed band's variants if present, any other band's otherwise,
    and finally the item's plain text.
    """
    rng = rng or random.Random()
    band = speed_band(speed_mph)
    options = item.variants.get(band)
    if not options:
        for other in SPEED_BANDS:
            if item.variants.get(other):
                options = item.variants[other]
                break
    if not options:
        return item.text
    return rng.choice(options)


def _milestone(done_mi: int, left: float) -> ChatterItem:
    to_go = format_miles(left)
    return ChatterItem(
        id=f"milestone-{done_mi}",
        trigger_distance=miles_to_metres(done_mi),
        text=f"{done_mi} miles in, {to_go} to go.",
        variants={
            "slow": [
                f"{done_mi} miles done. {to_go} to go.",
                f"{done_mi} miles in. Plenty of time, {to_go} left.",
            ],
            "cruise": [
                f"{done_mi} miles in, {to_go} to go.",
                f"Good rhythm. {to_go} to go.",
            ],
            "fast": [
                f"{done_mi} miles down already. {to_go} left at this pace.",
                f"{to_go} to go. Making serious time.",
            ],
        },
    )


def _halfway(distance: float) -> ChatterItem:
    return ChatterItem(
        id="halfway",
        trigger_distance=distance,
        text="Halfway there.",
        variants={
            "slow": ["Halfway there. Hang in there.", "That's half the route done."],
            "cruise": ["Halfway there.", "Halfway. Good rhythm so far."],
            "fast": ["Halfway already. Running well ahead of pace.", "Halfway point, and quickly."],
        },
    )


def _last_mile(distance: float) -> ChatterItem:
    return ChatterItem(
        id="last-mile",
        trigger_distance=distance,
        text="Last mile.",
        variants={
            "slow": ["Last mile. Almost there."],
            "cruise": ["Last mile.", "One mile to go."],
            "fast": ["Last mile. Ease it in."],
        },
    )


def _transit_preview(zone: Zone, curve_count: int) -> ChatterItem:
    length = format_miles(zone.length)
    curves = "no real curves" if curve_count == 0 else f"{curve_count} sweepers"
    return ChatterItem(
        id=f"preview-{zone.zone_id}",
        trigger_distance=zone.start_distance + _PREVIEW_OFFSET_M,
        text=f"{length} of open road ahead.",
        variants={
            "slow": [
                f"{length} of open road. Should be smooth from here.",
                f"Open road for {length}. Settle in.",
            ],
            "cruise": [
                f"{length} of open road, {curves} to keep it interesting.",
                f"Cruising into {length} of open road. I'll call the sweepers.",
            ],
            "fast": [
                f"{length} of open road. Watch for speed traps.",
                f"Open road, {length}. Ease off near the overpasses.",
            ],
        },
    )


def _technical_warning(technical: Zone, curve_count: int) -> ChatterItem:
    curves = f"{curve_count} curves" if curve_count != 1 else "1 curve"
    return ChatterItem(
        id=f"exit-{technical.zone_id}",
        trigger_distance=technical.start_distance - _EXIT_WARNING_M,
        text=f"Technical section in half a mile. {curves} waiting.",
        variants={
            "slow": [f"Technical section in half a mile. {curves} coming up."],
            "cruise": [
                f"Heads up, technical section in half a mile. {curves} waiting.",
                f"Open road ends in half a mile. Then {curves}.",
            ],
            "fast": [
                f"{curves} in half a mile. Good time to shed some speed.",
                "Technical in half a mile. Might want to dial it back.",
            ],
        },
    )


def build_progress_timeline(
    total_distance: float,
    zones: Sequence[Zone] = (),
    curves: Sequence[Curve] = (),
) -> List[ChatterItem]:
    """
    Template chatter for a route.

    - a milestone every 10 miles ("N miles in, M to go")
    - halfway, and the last mile, on routes long enough for them to matter
    - a preview at the start of every long transit zone
    - a half-mile warning before a technical zone that follows one

    Returns:
        Items sorted by trigger distance, at least a mile apart
    """
    if total_distance <= 0:
        return []

    items: List[ChatterItem] = []
    total_mi = metres_to_miles(total_distance)

    step = CODRIVER_CHATTER_MILESTONE_MI
    done_mi = step
    while done_mi < total_mi - 1:
        left = total_distance - miles_to_metres(done_mi)
        items.append(_milestone(done_mi, left))
        done_mi += step

    if total_mi >= 4:
        items.append(_halfway(total_distance / 2.0))
    if total_mi >= 3:
        items.append(_last_mile(total_distance - miles_to_metres(1.0)))

    for i, zone in enumerate(zones):
        if zone.character is not ZoneCharacter.TRANSIT:
            continue
        if metres_to_miles(zone.length) < CODRIVER_CHATTER_PREVIEW_MIN_MI:
            continue
        items.append(_transit_preview(zone, len(curves_in_zone(curves, zone))))
        nxt = zones[i + 1] if i + 1 < len(zones) else None
        if nxt is not None and nxt.character is ZoneCharacter.TECHNICAL:
            items.append(_technical_warning(nxt, len(curves_in_zone(curves, nxt))))

    items.sort(key=lambda item: item.trigger_distance)

    # Zone-anchored items win over plain progress milestones when crowded
    thinned: List[ChatterItem] = []
    for item in items:
        if thinned and item.trigger_distance - thinned[-1].trigger_distance < _MIN_SPACING_M:
            if thinned[-1].id.startswith("milestone") and not item.id.startswith("milestone"):
                thinned[-1] = item
            continue
        thinned.append(item)
    return thinned
