"""
Imagery references for candidate centroids.
"""
import math
from typing import Optional
from urllib.parse import urlencode

from parcel_locator.config import GOOGLE_MAPS_API_KEY, GOOGLE_STATIC_MAPS_URL, IGN_WMTS_URL


def satellite_image_ref(
    lat: float,
    lng: float,
    api_key: Optional[str] = GOOGLE_MAPS_API_KEY,
    zoom: int = 20,
    size: int = 400,
) -> str:
    """
    Build an aerial-imagery URL centred on (lat, lng).

    Google Static Maps satellite crop when a key is available, otherwise the
    IGN orthophoto WMTS tile containing the point.
    """
    if api_key:
        params = {
            "center": f"{lat},{lng}",
            "zoom": zoom,
            "size": f"{size}x{size}",
            "maptype": "satellite",
            "key": api_key,
        }
        return f"{GOOGLE_STATIC_MAPS_URL}?{urlencode(params)}"

    # Web-Mercator tile indices
    zoom = min(zoom, 19)
    n = 2 ** zoom
    col = int((lng + 180.0) / 360.0 * n)
    lat_rad = math.radians(lat)
    row = int((1.0 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2.0 * n)
    params = {
        "SERVICE": "WMTS",
        "VERSION": "1.0.0",
        "REQUEST": "GetTile",
        "LAYER": "ORTHOIMAGERY.ORTHOPHOTOS",
        "STYLE": "normal",
        "FORMAT": "image/jpeg",
        "TILEMATRIXSET": "PM",
        "TILEMATRIX": zoom,
        "TILEROW": row,
        "TILECOL": col,
    }
    return f"{IGN_WMTS_URL}?{urlencode(params)}"
