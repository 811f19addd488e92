"""Great-circle distance, bearing and grid helpers.

All functions are pure. Coordinates are WGS84 decimal degrees; the Earth is
treated as a sphere of radius ``EARTH_RADIUS_M``.
"""
from __future__ import annotations

import math
from typing import List, Tuple

import numpy as np

from offline_qth.config import EARTH_RADIUS_M, KM_PER_DEGREE, MIN_COS_LAT

__all__ = [
    "CARDINAL_POINTS",
    "haversine_meters",
    "haversine_meters_array",
    "initial_bearing",
    "initial_bearing_array",
    "bearing_to_cardinal",
    "grid_locator",
    "to_dms",
    "bounding_box",
]

CARDINAL_POINTS = ('N', 'NE', 'E', 'SE', 'S', 'SW', 'W', 'NW')

# (min_lat, max_lat, min_lon, max_lon)
Rect = Tuple[float, float, float, float]


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute great-circle distance in meters between two WGS84 coords."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(dlambda/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def haversine_meters_array(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Vectorised haversine from one origin to many points (meters)."""
    phi1 = np.radians(lat)
    phi2 = np.radians(lats)
    dphi = phi2 - phi1
    dlambda = np.radians(lons - lon)
    a = np.sin(dphi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlambda / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, degrees in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)
    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def initial_bearing_array(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    phi1 = np.radians(lat)
    phi2 = np.radians(lats)
    dlambda = np.radians(lons - lon)
    y = np.sin(dlambda) * np.cos(phi2)
    x = np.cos(phi1) * np.sin(phi2) - np.sin(phi1) * np.cos(phi2) * np.cos(dlambda)
    return np.mod(np.degrees(np.arctan2(y, x)) + 360.0, 360.0)


def bearing_to_cardinal(bearing: float) -> str:
    """Nearest of the 8 compass points (bearing / 45 rounded half up, mod 8)."""
    index = int(math.floor(bearing / 45.0 + 0.5)) % 8
    return CARDINAL_POINTS[index]


def grid_locator(lat: float, lon: float) -> str:
    """6-character Maidenhead locator, e.g. (41.714775, -72.72726) -> 'FN31pr'.

    Field (A-R), square (0-9), subsquare (a-x). The north pole and the
    antimeridian are folded into the last cell so the result is always valid.
    """
    adj_lon = min(max(lon + 180.0, 0.0), 360.0 - 1e-9)
    adj_lat = min(max(lat + 90.0, 0.0), 180.0 - 1e-9)

    field_lon = chr(ord('A') + int(adj_lon // 20))
    field_lat = chr(ord('A') + int(adj_lat // 10))

    adj_lon %= 20
    adj_lat %= 10
    square_lon = int(adj_lon // 2)
    square_lat = int(adj_lat // 1)

    adj_lon = (adj_lon % 2) * 60
    adj_lat = (adj_lat % 1) * 60
    sub_lon = chr(ord('a') + int(adj_lon // 5))
    sub_lat = chr(ord('a') + int(adj_lat // 2.5))

    return f"{field_lon}{field_lat}{square_lon}{square_lat}{sub_lon}{sub_lat}"


def to_dms(decimal: float, is_latitude: bool) -> str:
    """Format decimal degrees as degrees/minutes/seconds, e.g. 35°36'0.00" N."""
    absolute = abs(decimal)
    degrees = int(absolute)
    minutes_decimal = (absolute - degrees) * 60
    minutes = int(minutes_decimal)
    seconds = (minutes_decimal - minutes) * 60
    if is_latitude:
        direction = 'N' if decimal >= 0 else 'S'
    else:
        direction = 'E' if decimal >= 0 else 'W'
    return f"{degrees}°{minutes}'{seconds:.2f}\" {direction}"


def bounding_box(lat: float, lon: float, radius_km: float) -> List[Rect]:
    """Approximate search rectangle(s) around a point.

    Uses 1° latitude ≈ 111 km and 1° longitude ≈ 111 km × cos(lat), with
    cos(lat) floored at ``MIN_COS_LAT``. The longitude half-width is widened
    to the circle's true east-west reach, asin(sin(r/R) / cos(lat)), which is
    larger at high latitudes. A box crossing the antimeridian is split in
    two; a box spanning all longitudes is returned whole.
    """
    lat_delta = radius_km / KM_PER_DEGREE
    cos_lat = max(math.cos(math.radians(lat)), MIN_COS_LAT)
    lon_delta = radius_km / (KM_PER_DEGREE * cos_lat)

    angular = radius_km * 1000.0 / EARTH_RADIUS_M
    if angular >= math.pi / 2:
        lon_delta = 180.0
    else:
        reach = math.sin(angular) / cos_lat
        lon_delta = 180.0 if reach >= 1.0 else max(lon_delta, math.degrees(math.asin(reach)))

    min_lat = max(lat - lat_delta, -90.0)
    max_lat = min(lat + lat_delta, 90.0)

    if lon_delta >= 180.0 or min_lat <= -90.0 or max_lat >= 90.0:
        # Circle reaches a pole or wraps the globe: every longitude qualifies
        return [(min_lat, max_lat, -180.0, 180.0)]

    min_lon = lon - lon_delta
    max_lon = lon + lon_delta
    if min_lon < -180.0:
        return [(min_lat, max_lat, min_lon + 360.0, 180.0), (min_lat, max_lat, -180.0, max_lon)]
    if max_lon > 180.0:
        return [(min_lat, max_lat, min_lon, 180.0), (min_lat, max_lat, -180.0, max_lon - 360.0)]
    return [(min_lat, max_lat, min_lon, max_lon)]
