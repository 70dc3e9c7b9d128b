# roadwatch/utils/geo.py

"""
Geospatial utility functions.
"""

import math
from typing import Tuple

EARTH_RADIUS_M = 6371000.0
GEOHASH_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"


def haversine(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """
    Compute the great-circle distance between two points on the Earth.

    Parameters
    ----------
    a
        (latitude, longitude) of point A, in decimal degrees.
    b
        (latitude, longitude) of point B, in decimal degrees.

    Returns
    -------
    float
        Distance between A and B in metres.
    """
    lat1, lon1 = a
    lat2, lon2 = b
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lam = math.radians(lon2 - lon1)
    h = math.sin(d_phi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(d_lam/2)**2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def encode_geohash(lat: float, lon: float, precision: int = 7) -> str:
    """
    Encode a point as a base-32 geohash string.

    Bits alternate longitude/latitude starting with longitude; a coordinate
    equal to the cell midpoint falls into the upper half.

    Parameters
    ----------
    lat
        Latitude in decimal degrees.
    lon
        Longitude in decimal degrees.
    precision
        Number of characters in the result.

    Returns
    -------
    str
        Geohash of the cell containing (lat, lon).
    """
    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0
    chars: list[str] = []
    idx = bit = 0
    even = True

    while len(chars) < precision:
        if even:
            mid = (lon_lo + lon_hi) / 2
            if lon >= mid:
                idx = idx * 2 + 1
                lon_lo = mid
            else:
                idx = idx * 2
                lon_hi = mid
        else:
            mid = (lat_lo + lat_hi) / 2
            if lat >= mid:
                idx = idx * 2 + 1
                lat_lo = mid
            else:
                idx = idx * 2
                lat_hi = mid
        even = not even

        bit += 1
        if bit == 5:
            chars.append(GEOHASH_BASE32[idx])
            idx = bit = 0

    return "".join(chars)


def covering_prefixes(
    lat: float,
    lon: float,
    radius_m: float,
    precision: int = 5,
) -> list[str]:
    """
    Geohash prefixes of every cell touched by the bounding box of a circle.

    A single prefix misses neighbours that sit across a cell edge, so the
    point itself and the four corners of the ``radius_m`` box around it are
    all encoded. Cells at precision 5 are several km wide, so the corners
    cover every cell the circle can reach.
    """
    d_lat = math.degrees(radius_m / EARTH_RADIUS_M)
    cos_lat = max(math.cos(math.radians(lat)), 1e-12)
    d_lon = math.degrees(radius_m / (EARTH_RADIUS_M * cos_lat))

    corners = [
        (lat, lon),
        (min(lat + d_lat, 90.0), lon - d_lon),
        (min(lat + d_lat, 90.0), lon + d_lon),
        (max(lat - d_lat, -90.0), lon - d_lon),
        (max(lat - d_lat, -90.0), lon + d_lon),
    ]
    prefixes = set()
    for c_lat, c_lon in corners:
        # wrap across the antimeridian
        c_lon = (c_lon + 180.0) % 360.0 - 180.0
        prefixes.add(encode_geohash(c_lat, c_lon, precision))
    return sorted(prefixes)
