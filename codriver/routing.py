"""
Routing collaborators: road geometry between two points.

The co-driver never finds paths itself. It asks a Directions service for
the road from the vehicle to a point projected ahead, and reads back the
polyline plus the per-step maneuver list. Both Mapbox and OSRM speak the
same response shape (GeoJSON geometry, steps with intersections).
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

import requests

from config import (
    CODRIVER_MAPBOX_URL,
    CODRIVER_OSRM_URL,
    CODRIVER_ROUTING_PROFILE,
    CODRIVER_ROUTING_TIMEOUT_S,
)

logger = logging.getLogger('tramo.routing')

LatLon = Tuple[float, float]

_HIGHWAY_NAMES = ("interstate", "freeway", "motorway", "expressway", "turnpike")
_INTERSTATE_REF = re.compile(r"^I-\d")


class RoutingError(Exception):
    """Routing service unreachable, rejected the request, or sent garbage."""


@dataclass(frozen=True)
class RouteStep:
    maneuver_type: str
    distance: float
    instruction: str = ""
    modifier: str = ""
    name: str = ""
    ref: str = ""
    intersection_classes: Tuple[Tuple[str, ...], ...] = ()


@dataclass(frozen=True)
class RouteResult:
    """Ordered (lat, lon) polyline, maneuver steps, total distance (metres)."""

    points: Tuple[LatLon, ...]
    steps: Tuple[RouteStep, ...] = ()
    distance: float = 0.0

    @property
    def road_name(self) -> str:
        for step in self.steps:
            if step.name or step.ref:
                return step.name or step.ref
        return ""


class RoutingService(Protocol):
    """Protocol for road geometry sources."""

    def route(
        self, origin: LatLon, target: LatLon, profile: str = CODRIVER_ROUTING_PROFILE
    ) -> Optional[RouteResult]: ...


def parse_directions(payload: Dict[str, Any]) -> Optional[RouteResult]:
    """
    Parse a Mapbox/OSRM Directions response.

    Returns:
        RouteResult for the first route, or None if the service found none

    Raises:
        RoutingError: If the payload is not a Directions response
    """
    if not isinstance(payload, dict):
        raise RoutingError("Directions response is not an object")

    code = payload.get("code", "Ok")
    if code in ("NoRoute", "NoSegment"):
        return None
    if code != "Ok":
        raise RoutingError(f"Directions service returned {code}: {payload.get('message', '')}")

    routes = payload.get("routes") or []
    if not routes:
        return None

    route = routes[0]
    try:
        coords = route["geometry"]["coordinates"]
        # GeoJSON order is [lon, lat]
        points = tuple((float(c[1]), float(c[0])) for c in coords)
        steps = []
        for leg in route.get("legs", []):
            for step in leg.get("steps", []):
                maneuver = step.get("maneuver", {})
                steps.append(RouteStep(
                    maneuver_type=maneuver.get("type", ""),
                    modifier=maneuver.get("modifier", ""),
                    distance=float(step.get("distance", 0.0)),
                    instruction=maneuver.get("instruction", ""),
                    name=step.get("name", "") or "",
                    ref=step.get("ref", "") or "",
                    intersection_classes=tuple(
                        tuple(inter.get("classes", []))
                        for inter in step.get("intersections", [])
                    ),
                ))
        distance = float(route.get("distance", 0.0))
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise RoutingError(f"Malformed Directions route: {e}") from e

    if not points:
        return None
    return RouteResult(points=points, steps=tuple(steps), distance=distance)


class _DirectionsClient(ABC):
    """Shared HTTP plumbing for Directions-style services. Subclasses build the URL."""

    def __init__(self, base_url: str, timeout: float, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self.request_count = 0

    @abstractmethod
    def _url(self, origin: LatLon, target: LatLon, profile: str) -> str:
        """Request URL for a route from origin to target."""

    def _params(self) -> Dict[str, str]:
        return {"geometries": "geojson", "overview": "full", "steps": "true"}

    def route(
        self, origin: LatLon, target: LatLon, profile: str = CODRIVER_ROUTING_PROFILE
    ) -> Optional[RouteResult]:
        url = self._url(origin, target, profile)
        self.request_count += 1
        try:
            response = self._session.get(url, params=self._params(), timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.HTTPError as e:
            raise RoutingError(f"Directions HTTP error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RoutingError(f"Directions request failed: {e}") from e
        except ValueError as e:
            raise RoutingError(f"Directions response is not JSON: {e}") from e

        result = parse_directions(payload)
        if result is None:
            logger.debug("No route from %.5f,%.5f to %.5f,%.5f", *origin, *target)
        return result

    def close(self):
        self._session.close()


class MapboxDirectionsClient(_DirectionsClient):
    """Mapbox Directions API (needs an access token)."""

    def __init__(
        self,
        access_token: str,
        base_url: str = CODRIVER_MAPBOX_URL,
        timeout: float = CODRIVER_ROUTING_TIMEOUT_S,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(base_url, timeout, session)
        if not access_token:
            raise ValueError("Mapbox access token is required")
        self._token = access_token

    def _url(self, origin: LatLon, target: LatLon, profile: str) -> str:
        return (
            f"{self.base_url}/{profile}/"
            f"{origin[1]},{origin[0]};{target[1]},{target[0]}"
        )

    def _params(self) -> Dict[str, str]:
        params = super()._params()
        params["access_token"] = self._token
        return params


class OSRMClient(_DirectionsClient):
    """OSRM HTTP route service."""

    def __init__(
        self,
        base_url: str = CODRIVER_OSRM_URL,
        timeout: float = CODRIVER_ROUTING_TIMEOUT_S,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(base_url, timeout, session)

    def _url(self, origin: LatLon, target: LatLon, profile: str) -> str:
        return (
            f"{self.base_url}/route/v1/{profile}/"
            f"{origin[1]},{origin[0]};{target[1]},{target[0]}"
        )


def detect_road_class(steps: Sequence[RouteStep]) -> str:
    """
    Classify the road ahead as "highway", "urban" or "technical".

    Names and refs of the first step are checked first (interstates,
    freeways). Otherwise intersection classes vote: more than 30% motorway
    or trunk is highway; tertiary/residential/service outnumbering the rest
    is urban; anything else is technical.
    """
    if not steps:
        return "technical"

    first_name = steps[0].name.lower()
    first_ref = steps[0].ref.upper()
    if _INTERSTATE_REF.match(first_ref) or any(n in first_name for n in _HIGHWAY_NAMES):
        return "highway"

    highway = urban = technical = 0
    for step in steps:
        for classes in step.intersection_classes:
            if "motorway" in classes or "trunk" in classes:
                highway += 1
            elif "tertiary" in classes or "residential" in classes or "service" in classes:
                urban += 1
            else:
                technical += 1

    total = highway + urban + technical
    if total == 0:
        return "technical"
    if highway > total * 0.3:
        return "highway"
    if urban > technical:
        return "urban"
    return "technical"
