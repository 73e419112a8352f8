import math
from typing import Iterable, List

from crewslot.models.entities import AssignmentCandidate, GeoPoint, Resource

# Mean Earth radius in miles; all distances in this package are miles.
EARTH_RADIUS_MILES = 3958.8


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float, radius: float = EARTH_RADIUS_MILES) -> float:
    """Great-circle distance between two lat/lng points."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlng = math.radians(lng2 - lng1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2
    # rounding can push a just above 1 for near-antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))
    return radius * c


def distance_to(resource: Resource, location: GeoPoint, radius: float = EARTH_RADIUS_MILES) -> float:
    if resource.home is None:
        return math.inf
    return haversine_miles(resource.home.lat, resource.home.lng, location.lat, location.lng, radius)


def rank_by_distance(
    resources: Iterable[Resource], location: GeoPoint, radius: float = EARTH_RADIUS_MILES
) -> List[AssignmentCandidate]:
    """
    Order resources by distance from their home to ``location``.

    Resources without a home coordinate get an infinite distance, so they sort
    after every geolocated resource. ``sorted`` is stable: ties and the
    unlocated tail keep their input order.
    """
    candidates = [AssignmentCandidate(r, distance_to(r, location, radius)) for r in resources]
    return sorted(candidates, key=lambda c: c.distance)
