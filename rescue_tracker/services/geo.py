# rescue_tracker/services/geo.py
import math
from typing import List

from polyline import decode as polyline_decode

from rescue_tracker.models.tracking import Coordinate

EARTH_RADIUS_M = 6_371_000.0


def haversine_distance_m(a: Coordinate, b: Coordinate) -> float:
    """
    Compute great-circle distance between two points (lat/lon in degrees), in metres.
    """
    lat1 = math.radians(a.lat)
    lon1 = math.radians(a.lon)
    lat2 = math.radians(b.lat)
    lon2 = math.radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def format_distance_text(distance_m: float) -> str:
    """
    Human-readable distance in the style of driving directions:
    "850 m", "4.2 km", "290 km".
    """
    if distance_m < 1_000.0:
        return f"{int(round(distance_m))} m"

    km = distance_m / 1_000.0
    if km < 10.0:
        return f"{km:.1f} km"
    return f"{int(round(km))} km"


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_duration_text(duration_s: float) -> str:
    """
    Human-readable duration rounded to minutes: "1 min", "45 mins",
    "5 hours 12 mins", "1 day 3 hours".
    """
    minutes = max(1, int(round(duration_s / 60.0)))

    days, rem = divmod(minutes, 24 * 60)
    hours, mins = divmod(rem, 60)

    if days:
        return f"{_plural(days, 'day')} {_plural(hours, 'hour')}" if hours else _plural(days, "day")
    if hours:
        return f"{_plural(hours, 'hour')} {_plural(mins, 'min')}" if mins else _plural(hours, "hour")
    return _plural(mins, "min")


def decode_path(encoded: str) -> List[List[float]]:
    """Decode an encoded polyline into a list of [lat, lon] pairs."""

    if not encoded:
        return []
    try:
        decoded = polyline_decode(encoded)
    except (ValueError, TypeError, IndexError) as exc:
        raise ValueError("Unable to decode polyline") from exc
    return [[float(lat), float(lon)] for lat, lon in decoded]
