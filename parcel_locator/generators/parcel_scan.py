import asyncio
from typing import List, Optional

from loguru import logger

from parcel_locator.capabilities.base import Geocoder, ParcelCatalog
from parcel_locator.config import BBOX_HALF_WIDTH_METERS, EXPAND_FACTOR, GRID_MAX_CELLS, REVERSE_GEOCODE_CAP
from parcel_locator.errors import CAPABILITY_ERRORS
from parcel_locator.generators.zone_filters import filter_by_city, filter_by_search_zone, filter_excluded
from parcel_locator.models import (
    BoundingBox,
    LocalizationInput,
    ParcelCandidate,
    Point,
    QueryDescriptor,
    SearchZone,
)
from parcel_locator.schemas import ParcelRecord


class ParcelScanGenerator:
    """
    Parcel-scan mode: enumerate every parcel in a bounding box around the
    descriptor's location (or the user's search zone), then reverse-geocode
    the first few so they carry an address.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        catalog: ParcelCatalog,
        half_width_meters: float = BBOX_HALF_WIDTH_METERS,
        max_candidates: int = GRID_MAX_CELLS,
        reverse_geocode_cap: int = REVERSE_GEOCODE_CAP,
    ):
        self.geocoder = geocoder
        self.catalog = catalog
        self.half_width_meters = half_width_meters
        self.max_candidates = max_candidates
        self.reverse_geocode_cap = reverse_geocode_cap

    async def bounding_box(
        self, descriptor: QueryDescriptor, zone: Optional[SearchZone], expanded: bool = False
    ) -> Optional[BoundingBox]:
        """
        Bounding box to scan, or None when there is nothing to center it on.

        A strict-bounds zone is used as is, a radius zone becomes center +/- radius,
        otherwise the descriptor's city/postal code is geocoded and a fixed
        half-width box is drawn around the first hit.
        """
        factor = EXPAND_FACTOR if expanded else 1.0
        if zone is not None:
            if zone.is_strict_bounds:
                return zone.bounds.expanded(factor) if expanded else zone.bounds
            if zone.radius_km > 0:
                return BoundingBox.around(zone.lat, zone.lng, zone.radius_km * 1000 * factor)

        if not (descriptor.city or descriptor.postal_code):
            if zone is not None:
                return BoundingBox.around(zone.lat, zone.lng, self.half_width_meters * factor)
            logger.debug("⚠️ Parcel scan has no location to center on")
            return None

        try:
            hits = await self.geocoder.geocode(
                descriptor.location_query(), city=descriptor.city, postal_code=descriptor.postal_code
            )
        except CAPABILITY_ERRORS as e:
            logger.debug(f"⚠️ Geocoding the scan center failed: {e}")
            return None
        if not hits:
            return None
        return BoundingBox.around(hits[0].lat, hits[0].lng, self.half_width_meters * factor)

    @staticmethod
    def _to_candidate(record: ParcelRecord) -> ParcelCandidate:
        return ParcelCandidate(
            id=record.id,
            lat=record.centroid[0],
            lng=record.centroid[1],
            polygon=[Point(lat, lng) for lat, lng in record.polygon],
            building_footprint=[Point(lat, lng) for lat, lng in record.footprint],
            image_ref=record.image_ref,
            cell_row=record.row,
            cell_col=record.col,
        )

    async def _attach_address(self, candidate: ParcelCandidate):
        try:
            hit = await self.geocoder.reverse_geocode(candidate.lat, candidate.lng)
        except CAPABILITY_ERRORS as e:
            logger.debug(f"⚠️ Reverse geocoding failed for {candidate.id}: {e}")
            return
        if hit:
            candidate.address = hit.address
            candidate.postal_code = hit.postal_code
            candidate.city = hit.city

    async def generate(
        self, descriptor: QueryDescriptor, request: LocalizationInput, expanded: bool = False
    ) -> List[ParcelCandidate]:
        """
        Build parcel-scan candidates.

        Args:
            descriptor: Canonical query used to center the box and filter by city.
            request: Raw input; its search zone, when set, bounds the scan.
            expanded: Widened retry: box and zone doubled, city filter skipped.

        Returns:
            List[ParcelCandidate]: At most `max_candidates` parcels, none of them
                listed in `request.excluded`.
        """
        zone = request.zone.widened(EXPAND_FACTOR) if (request.zone and expanded) else request.zone
        bbox = await self.bounding_box(descriptor, request.zone, expanded)
        if bbox is None:
            return []

        try:
            records = await self.catalog.parcels_in_bbox(bbox)
        except CAPABILITY_ERRORS as e:
            logger.debug(f"⚠️ Parcel catalog failed: {e}")
            return []

        candidates = filter_excluded([self._to_candidate(r) for r in records], request.excluded)
        candidates = candidates[: self.max_candidates]
        candidates = filter_by_search_zone(candidates, zone)

        await asyncio.gather(*[self._attach_address(c) for c in candidates[: self.reverse_geocode_cap]])

        if not expanded:
            candidates = filter_by_city(candidates, descriptor)

        logger.debug(f"✅ Parcel scan produced {len(candidates)} candidate(s) (expanded={expanded})")
        return candidates
