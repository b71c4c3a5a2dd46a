"""Great-circle helpers used by query planning, clustering and ranking."""
import math

from merchant_locator.config import EARTH_RADIUS
from merchant_locator.models import LatLng, Viewport


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in meters on a sphere of radius EARTH_RADIUS."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: LatLng, b: LatLng) -> float:
    return haversine_m(a.lat, a.lng, b.lat, b.lng)


def half_diagonal_m(viewport: Viewport) -> float:
    sw, ne = viewport.south_west, viewport.north_east
    return haversine_m(sw.lat, sw.lng, ne.lat, ne.lng) / 2


def search_radius(viewport: Viewport, max_radius: int) -> int:
    """Half-diagonal of the viewport in whole meters, capped at max_radius."""
    return int(min(round(half_diagonal_m(viewport)), max_radius))


def coordinate_key(lat: float, lng: float, precision: int) -> str:
    return f"{lat:.{precision}f}_{lng:.{precision}f}"
