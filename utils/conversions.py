"""
Unit conversion utilities for the co-driver.

Provides speed and distance conversions between the imperial units used
for speech and the metric units used internally.
"""

from config import FEET_PER_METRE, METRES_PER_MILE, MPS_PER_MPH, MPS_PER_KNOT


# Speed conversions
def mph_to_mps(mph):
    """Convert miles per hour to metres per second."""
    return mph * MPS_PER_MPH


def mps_to_mph(mps):
    """Convert metres per second to miles per hour."""
    return mps / MPS_PER_MPH


def knots_to_mph(knots):
    """Convert knots to miles per hour."""
    return knots * MPS_PER_KNOT / MPS_PER_MPH


# Distance conversions
def miles_to_metres(miles):
    """Convert miles to metres."""
    return miles * METRES_PER_MILE


def metres_to_miles(metres):
    """Convert metres to miles."""
    return metres / METRES_PER_MILE


def metres_to_feet(metres):
    """Convert metres to feet."""
    return metres * FEET_PER_METRE


def format_miles(metres):
    """
    Format a distance for speech, e.g. "half a mile", "1 mile", "2.5 miles".

    Distances under a tenth of a mile are spoken in feet.
    """
    miles = metres_to_miles(metres)
    if miles < 0.1:
        feet = int(round(metres_to_feet(metres) / 50.0)) * 50
        return f"{max(feet, 50)} feet"
    if 0.4 <= miles < 0.6:
        return "half a mile"
    if miles < 1.0:
        return f"{miles:.1f} miles"
    rounded = round(miles, 1)
    if rounded == int(rounded):
        whole = int(rounded)
        return "1 mile" if whole == 1 else f"{whole} miles"
    return f"{rounded} miles"
