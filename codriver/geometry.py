"""Geometry utilities for GPS and road calculations."""

import math
from typing import Any, List, Sequence, Tuple

import numpy as np

EARTH_RADIUS_M = 6371000


def _get_lat_lon(point: Any) -> Tuple[float, float]:
    """Extract lat/lon from a point (tuple or object with .lat/.lon)."""
    if hasattr(point, 'lat') and hasattr(point, 'lon'):
        return point.lat, point.lon
    return point[0], point[1]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate great circle distance between two GPS points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate bearing from point 1 to point 2 in degrees (0-360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(
        delta_lambda
    )

    bearing_rad = math.atan2(x, y)
    return (math.degrees(bearing_rad) + 360) % 360


def angle_difference(angle1: float, angle2: float) -> float:
    """
    Signed smallest rotation from angle1 to angle2 in degrees (-180 to 180).

    Positive is clockwise (a right turn when comparing headings).
    """
    return (angle2 - angle1 + 180) % 360 - 180


def point_along_bearing(
    lat: float, lon: float, bearing_deg: float, distance_m: float
) -> Tuple[float, float]:
    """Calculate point at given distance and bearing from start point."""
    R = EARTH_RADIUS_M

    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    bearing_rad = math.radians(bearing_deg)

    lat2 = math.asin(
        math.sin(lat_rad) * math.cos(distance_m / R)
        + math.cos(lat_rad) * math.sin(distance_m / R) * math.cos(bearing_rad)
    )

    lon2 = lon_rad + math.atan2(
        math.sin(bearing_rad) * math.sin(distance_m / R) * math.cos(lat_rad),
        math.cos(distance_m / R) - math.sin(lat_rad) * math.sin(lat2),
    )

    return math.degrees(lat2), math.degrees(lon2)


# Destination-point projection under its usual name
destination_point = point_along_bearing


def cumulative_distances(points: Sequence[Any]) -> List[float]:
    """Calculate cumulative distance along a list of points.

    Points can be (lat, lon) tuples or objects with .lat/.lon attributes.
    Vectorised haversine over all consecutive pairs.
    """
    if not points:
        return []
    if len(points) == 1:
        return [0.0]

    coords = np.radians(np.array([_get_lat_lon(p) for p in points], dtype=float))
    lat = coords[:, 0]
    lon = coords[:, 1]

    dlat = np.diff(lat)
    dlon = np.diff(lon)
    a = (
        np.sin(dlat / 2) ** 2
        + np.cos(lat[:-1]) * np.cos(lat[1:]) * np.sin(dlon / 2) ** 2
    )
    segment = 2 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    return [0.0] + np.cumsum(segment).tolist()


def polyline_length(points: Sequence[Any]) -> float:
    """Total length of a polyline in meters."""
    if len(points) < 2:
        return 0.0
    return cumulative_distances(points)[-1]


def nearest_vertex(lat: float, lon: float, points: Sequence[Any]) -> Tuple[int, float]:
    """
    Find the polyline vertex closest to a position.

    Returns:
        (index, distance_m), or (-1, inf) for an empty polyline
    """
    if not points:
        return -1, float('inf')

    coords = np.radians(np.array([_get_lat_lon(p) for p in points], dtype=float))
    phi1 = math.radians(lat)
    dphi = coords[:, 0] - phi1
    dlmb = coords[:, 1] - math.radians(lon)
    a = (
        np.sin(dphi / 2) ** 2
        + math.cos(phi1) * np.cos(coords[:, 0]) * np.sin(dlmb / 2) ** 2
    )
    dist = 2 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    idx = int(np.argmin(dist))
    return idx, float(dist[idx])


def nearest_vertex_distance(lat: float, lon: float, points: Sequence[Any]) -> float:
    """Distance in meters from a position to the closest polyline vertex."""
    return nearest_vertex(lat, lon, points)[1]


def project_to_polyline(lat: float, lon: float, points: Sequence[Any]) -> Tuple[int, float, float]:
    """
    Closest point on a polyline to a position.

    Uses a local equirectangular projection around the position, accurate to
    well under a metre over the few kilometres of a lookahead window.

    Returns:
        (segment_index, fraction along that segment, distance_m);
        (-1, 0.0, inf) for an empty polyline
    """
    if not points:
        return -1, 0.0, float('inf')
    if len(points) == 1:
        p_lat, p_lon = _get_lat_lon(points[0])
        return 0, 0.0, haversine_distance(lat, lon, p_lat, p_lon)

    coords = np.array([_get_lat_lon(p) for p in points], dtype=float)
    x = (coords[:, 1] - lon) * 111320 * math.cos(math.radians(lat))
    y = (coords[:, 0] - lat) * 110540

    x1, y1 = x[:-1], y[:-1]
    dx, dy = np.diff(x), np.diff(y)
    seg_len_sq = dx * dx + dy * dy

    # Parameter of the closest point on each segment, clamped to [0, 1]
    with np.errstate(divide='ignore', invalid='ignore'):
        t = np.where(seg_len_sq > 0, -(x1 * dx + y1 * dy) / seg_len_sq, 0.0)
    t = np.clip(t, 0.0, 1.0)

    dist = np.hypot(x1 + t * dx, y1 + t * dy)
    idx = int(np.argmin(dist))
    return idx, float(t[idx]), float(dist[idx])


def distance_to_polyline(lat: float, lon: float, points: Sequence[Any]) -> float:
    """Distance in meters from a position to the nearest segment of a polyline."""
    return project_to_polyline(lat, lon, points)[2]
