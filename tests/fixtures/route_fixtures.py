"""
Synthetic road fixtures for curve, zone and planner tests.
Roads are built from legs of (distance_m, turn_deg) so the geometry of every
bend is known exactly; positive turns are to the right.
"""

from codriver.geometry import point_along_bearing

ORIGIN = (51.5074, -0.1278)


def straight(length_m, step_m=50.0):
    """Legs for a straight of length_m, split into step_m pieces."""
    legs = []
    remaining = length_m
    while remaining > 1e-9:
        step = min(step_m, remaining)
        legs.append((step, 0.0))
        remaining -= step
    return legs


def bend(angle_deg, pieces=3, spacing_m=10.0):
    """Legs for a single bend turning angle_deg over `pieces` vertices."""
    return [(spacing_m, angle_deg / pieces)] * pieces


def build_road(legs, start=ORIGIN, heading=0.0):
    """
    Polyline for a list of (distance_m, turn_deg) legs.

    Each leg moves distance_m along the current heading, then turns by
    turn_deg at the vertex it ends on.
    """
    points = [start]
    lat, lon = start
    for distance_m, turn_deg in legs:
        lat, lon = point_along_bearing(lat, lon, heading, distance_m)
        points.append((lat, lon))
        heading = (heading + turn_deg) % 360
    return points


def straight_road(length_m, start=ORIGIN, heading=0.0, step_m=50.0):
    return build_road(straight(length_m, step_m), start, heading)


def single_bend_road(angle_deg, lead_m=500.0, tail_m=500.0, start=ORIGIN, heading=0.0):
    """Straight, one bend of angle_deg, straight."""
    return build_road(straight(lead_m) + bend(angle_deg) + straight(tail_m), start, heading)


def twisty_road(bends, gap_m=150.0, lead_m=1000.0, tail_m=1000.0, start=ORIGIN, heading=0.0):
    """Straight lead, then each bend angle separated by gap_m straights, then a tail."""
    legs = straight(lead_m)
    for angle in bends:
        legs += bend(angle)
        legs += straight(gap_m)
    legs += straight(tail_m)
    return build_road(legs, start, heading)
