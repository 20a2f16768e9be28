import asyncio
from typing import Callable, List, Optional

from loguru import logger

from parcel_locator.capabilities.base import Geocoder, LanguageModel
from parcel_locator.capabilities.imagery import satellite_image_ref
from parcel_locator.config import EXTRA_ADDRESS_CAP, GEOCODE_MAX_RESULTS, GEOCODE_MAX_RESULTS_EXPANDED
from parcel_locator.errors import CAPABILITY_ERRORS
from parcel_locator.generators.zone_filters import filter_excluded, reduce_zone_with_hints
from parcel_locator.models import Candidate, LocalizationInput, Point, QueryDescriptor
from parcel_locator.schemas import ExtractedAddress, GeocodeHit


class AddressGenerator:
    """
    Address mode: geocode the descriptor's city/postal code, plus any
    addresses quoted in the free text, then apply hint-based zone reduction.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        language: Optional[LanguageModel] = None,
        image_ref: Callable[[float, float], str] = satellite_image_ref,
    ):
        self.geocoder = geocoder
        self.language = language
        self.image_ref = image_ref

    def _candidate(self, hit: GeocodeHit, candidate_id: str, source: str, fallback: QueryDescriptor) -> Candidate:
        return Candidate(
            id=candidate_id,
            lat=hit.lat,
            lng=hit.lng,
            address=hit.address,
            postal_code=hit.postal_code or fallback.postal_code,
            city=hit.city or fallback.city,
            image_ref=self.image_ref(hit.lat, hit.lng),
            source=source,
            geocode_score=hit.score,
            place_types=list(hit.place_types),
        )

    async def _geocode(self, query: str, city: Optional[str], postal_code: Optional[str]) -> List[GeocodeHit]:
        try:
            return await self.geocoder.geocode(query, city=city, postal_code=postal_code)
        except CAPABILITY_ERRORS as e:
            logger.debug(f"⚠️ Geocoding failed for '{query}': {e}")
            return []

    async def _text_addresses(self, text: str) -> List[ExtractedAddress]:
        if not self.language:
            return []
        try:
            return (await self.language.extract_addresses(text))[:EXTRA_ADDRESS_CAP]
        except CAPABILITY_ERRORS as e:
            logger.debug(f"⚠️ Address extraction failed: {e}")
            return []

    async def generate(
        self, descriptor: QueryDescriptor, request: LocalizationInput, expanded: bool = False
    ) -> List[Candidate]:
        """
        Build address-mode candidates.

        Args:
            descriptor: Canonical query.
            request: Raw input (text and hints are used here).
            expanded: Widened retry: more geocoding results, separate city and
                postal-code queries, no zone reduction.

        Locations listed in `request.excluded` are never returned.

        Returns:
            List[Candidate]: Deduplicated candidates, geocoding rank order first.
        """
        candidates: List[Candidate] = []
        town_center: Optional[Point] = None

        if descriptor.city or descriptor.postal_code:
            queries = [descriptor.location_query()]
            if expanded and descriptor.city and descriptor.postal_code:
                queries += [f"{descriptor.city} France", f"{descriptor.postal_code} France"]
            results = await asyncio.gather(
                *[self._geocode(q, descriptor.city, descriptor.postal_code) for q in queries]
            )
            cap = GEOCODE_MAX_RESULTS_EXPANDED if expanded else GEOCODE_MAX_RESULTS
            hits = [hit for batch in results for hit in batch][:cap]
            if hits:
                town_center = Point(hits[0].lat, hits[0].lng)
            for rank, hit in enumerate(hits):
                candidates.append(self._candidate(hit, f"geocode-{rank}", "geocode", descriptor))

        if request.text:
            addresses = await self._text_addresses(request.text)
            results = await asyncio.gather(
                *[
                    self._geocode(a.address, a.city or descriptor.city, a.postal_code or descriptor.postal_code)
                    for a in addresses
                ]
            )
            for rank, (addr, hits) in enumerate(zip(addresses, results)):
                if hits:
                    candidate = self._candidate(hits[0], f"text-{rank}", "text-address", descriptor)
                    candidate.geocode_score = addr.confidence
                    candidates.append(candidate)

        candidates = filter_excluded(_dedupe(candidates), request.excluded)
        if not expanded:
            candidates = reduce_zone_with_hints(candidates, request.hints, town_center)

        logger.debug(f"✅ Address mode produced {len(candidates)} candidate(s) (expanded={expanded})")
        return candidates


def _dedupe(candidates: List[Candidate]) -> List[Candidate]:
    seen = set()
    unique = []
    for c in candidates:
        key = (round(c.lat, 5), round(c.lng, 5))
        if key not in seen:
            seen.add(key)
            unique.append(c)
    return unique
