"""Geolocation filter: bounding box pre-filter + haversine distance."""
from __future__ import annotations

import math

from imgquery.db.schema import LATITUDE_COLUMN, LONGITUDE_COLUMN
from imgquery.search.expressions import EARTH_RADIUS_KM, Geo

KM_PER_DEGREE = 111.12


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres (same formula the SQL evaluates)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def _longitude_delta(latitude: float, max_km: float) -> float | None:
    """Half-width of the longitude box in degrees, or None when unbounded."""
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat <= 1e-12:
        return None
    approx = max_km / (KM_PER_DEGREE * cos_lat)
    # Away from the equator the circle's widest longitude lies poleward of
    # the origin; asin(sin(d)/cos(lat)) is the exact extent.
    ratio = math.sin(max_km / EARTH_RADIUS_KM) / cos_lat
    if ratio >= 1.0:
        return None
    delta = max(approx, math.degrees(math.asin(ratio)))
    return None if delta >= 180.0 else delta


def build_geo(latitude: float, longitude: float, max_distance_meters: float) -> Geo:
    """Build the geo expression for a circle of *max_distance_meters*."""
    max_km = max_distance_meters / 1000.0
    lat_delta = max_km / KM_PER_DEGREE

    lat_low = latitude - lat_delta
    lat_high = latitude + lat_delta
    reaches_pole = lat_low <= -90.0 or lat_high >= 90.0
    lat_box = (max(-90.0, lat_low), min(90.0, lat_high))

    lon_delta = None if reaches_pole else _longitude_delta(latitude, max_km)
    if lon_delta is None:
        lon_boxes: tuple[tuple[float, float], ...] = ()
    else:
        lo = longitude - lon_delta
        hi = longitude + lon_delta
        if lo < -180.0:
            lon_boxes = ((lo + 360.0, 180.0), (-180.0, hi))
        elif hi > 180.0:
            lon_boxes = ((lo, 180.0), (-180.0, hi - 360.0))
        else:
            lon_boxes = ((lo, hi),)

    return Geo(
        lat_column=LATITUDE_COLUMN,
        lon_column=LONGITUDE_COLUMN,
        latitude=latitude,
        longitude=longitude,
        max_km=max_km,
        lat_box=lat_box,
        lon_boxes=lon_boxes,
    )
