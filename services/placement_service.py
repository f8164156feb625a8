"""
Placement service: random skillcheck / escape-area positions around a center point.

Positions are sampled uniformly inside a circle of ``max_distance`` meters:
the radius is ``sqrt(u) * max_distance`` so points do not cluster at the
center, and the polar offset is converted to a lat/lng delta with the
meters-per-degree approximation.
"""
import math
import random
from typing import List

from schemas import Location, Skillcheck, EscapeArea
from services.naming_service import generate_skillcheck_id, generate_escape_area_id
from core.timeutils import utcnow

METERS_PER_DEGREE_LAT = 111320
EARTH_RADIUS_METERS = 6371000


def random_point_within(center: Location, max_distance: float) -> Location:
    distance = math.sqrt(random.random()) * max_distance
    angle = random.random() * 2 * math.pi

    delta_lat = (distance / METERS_PER_DEGREE_LAT) * math.cos(angle)
    delta_lng = (
        distance / (METERS_PER_DEGREE_LAT * math.cos(math.radians(center.latitude)))
    ) * math.sin(angle)

    return Location(
        latitude=center.latitude + delta_lat,
        longitude=center.longitude + delta_lng,
    )


def haversine_distance(a: Location, b: Location) -> float:
    """Great-circle distance between two points, in meters."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude - a.longitude)

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


def generate_skillcheck_positions(center: Location, count: int, max_distance: float) -> List[Skillcheck]:
    return [
        Skillcheck(id=generate_skillcheck_id(i), location=random_point_within(center, max_distance))
        for i in range(count)
    ]


def generate_escape_area(center: Location, max_distance: float) -> EscapeArea:
    return EscapeArea(
        id=generate_escape_area_id(),
        location=random_point_within(center, max_distance),
        is_revealed=True,
        revealed_at=utcnow(),
    )
