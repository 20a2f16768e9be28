"""
Google Geocoding adapter (forward and reverse).
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

from aiohttp import ClientError
from loguru import logger
from pydantic import ValidationError

from parcel_locator.clients import HttpClient
from parcel_locator.config import GOOGLE_GEOCODE_URL, GOOGLE_MAPS_API_KEY
from parcel_locator.errors import CapabilityError
from parcel_locator.schemas import GeocodeHit, ReverseGeocodeHit

LOCATION_TYPE_ADJUSTMENT = {
    "ROOFTOP": 0.10,
    "RANGE_INTERPOLATED": -0.05,
    "GEOMETRIC_CENTER": -0.10,
    "APPROXIMATE": -0.15,
}

# Lower is more precise
REVERSE_PRIORITY = ["street_address", "route", "premise", "subpremise", "locality"]


def _component(components: List[Dict[str, Any]], *types: str) -> Optional[str]:
    for comp in components:
        if any(t in comp.get("types", []) for t in types):
            return comp.get("long_name")
    return None


def precision_score(result: Dict[str, Any], city: Optional[str] = None, postal_code: Optional[str] = None) -> float:
    """
    Score a geocoding result by how precise the resolved address is.

    Args:
        result: One entry of the Google `results` array.
        city: Expected city, rewarded when it appears in the address.
        postal_code: Expected postal code, rewarded when it appears in the address.

    Returns:
        float: Precision in [0, 1].
    """
    components = result.get("address_components", [])
    has_number = _component(components, "street_number") is not None
    has_route = _component(components, "route") is not None
    has_postal = _component(components, "postal_code") is not None
    has_locality = _component(components, "locality") is not None

    score = 0.5
    if has_number and has_route and has_postal:
        score = 0.95
    elif has_route and has_postal:
        score = 0.85
    elif has_postal and has_locality:
        score = 0.70

    location_type = result.get("geometry", {}).get("location_type")
    adjustment = LOCATION_TYPE_ADJUSTMENT.get(location_type, 0.0)
    if adjustment > 0 and score < 0.90:
        score = min(0.98, score + adjustment)
    elif adjustment < 0:
        score = max(0.5, score + adjustment)

    formatted = (result.get("formatted_address") or "").lower()
    if postal_code and postal_code in formatted:
        score += 0.03
    if city and city.lower() in formatted:
        score += 0.02
    return min(1.0, score)


class GoogleGeocoder:
    """Geocoding capability backed by the Google Geocoding API."""

    def __init__(self, http: HttpClient, api_key: Optional[str] = None, region: str = "fr"):
        self.http = http
        self.api_key = api_key or GOOGLE_MAPS_API_KEY
        self.region = region

    async def _call(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise CapabilityError("geocoding", "GOOGLE_MAPS_API_KEY is not configured")
        params = {**params, "key": self.api_key, "region": self.region}
        try:
            data = await self.http.get_json(GOOGLE_GEOCODE_URL, params=params)
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            raise CapabilityError("geocoding", str(e) or type(e).__name__) from e
        if not isinstance(data, dict):
            raise CapabilityError("geocoding", f"unexpected payload type {type(data).__name__}")

        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise CapabilityError("geocoding", f"status {status}: {data.get('error_message', '')}")
        return [r for r in data.get("results") or [] if isinstance(r, dict)]

    async def geocode(
        self, query: str, city: Optional[str] = None, postal_code: Optional[str] = None
    ) -> List[GeocodeHit]:
        """
        Geocode a free-text query, best hits first.

        Args:
            query: Address or place text.
            city: Optional city bias.
            postal_code: Optional postal code bias.

        Returns:
            List[GeocodeHit]: Hits sorted by descending precision score.
        """
        start = time.perf_counter()
        params: Dict[str, Any] = {"address": query}
        if postal_code:
            params["components"] = f"country:{self.region.upper()}|postal_code:{postal_code}"
        else:
            params["components"] = f"country:{self.region.upper()}"

        results = await self._call(params)
        hits: List[GeocodeHit] = []
        for result in results:
            location = result.get("geometry", {}).get("location", {})
            components = result.get("address_components", [])
            try:
                hits.append(
                    GeocodeHit(
                        lat=location["lat"],
                        lng=location["lng"],
                        address=result.get("formatted_address", ""),
                        score=precision_score(result, city, postal_code),
                        postal_code=_component(components, "postal_code"),
                        city=_component(components, "locality", "postal_town"),
                        place_types=result.get("types", []),
                    )
                )
            except (KeyError, ValidationError) as e:
                logger.debug(f"⚠️ Skipping malformed geocoding result for '{query}': {e}")

        hits.sort(key=lambda h: h.score, reverse=True)
        logger.debug(f"✅ Geocoded '{query}' → {len(hits)} hit(s) in {time.perf_counter() - start:.2f}s")
        return hits

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[ReverseGeocodeHit]:
        """Resolve coordinates to the most precise address available."""
        results = await self._call({"latlng": f"{lat},{lng}", "language": self.region})
        if not results:
            return None

        def priority(result: Dict[str, Any]) -> int:
            types = result.get("types", [])
            for rank, kind in enumerate(REVERSE_PRIORITY):
                if kind in types:
                    return rank
            return len(REVERSE_PRIORITY)

        best = min(results, key=priority)
        components = best.get("address_components", [])
        return ReverseGeocodeHit(
            address=best.get("formatted_address", ""),
            postal_code=_component(components, "postal_code"),
            city=_component(components, "locality", "sublocality", "administrative_area_level_2"),
        )
