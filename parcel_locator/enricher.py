import asyncio
import time
from typing import Optional

from loguru import logger

from parcel_locator.capabilities.base import CadastralLookup, SalesDensitySource
from parcel_locator.config import SALES_RADIUS_METERS
from parcel_locator.errors import DEGRADABLE_ERRORS
from parcel_locator.models import Candidate


class Enricher:
    """
    Attaches cadastral and sales-density context to a candidate, in place.

    Both lookups run concurrently and are independent. A failure or an empty
    answer leaves the field as None and records a note; nothing is raised.
    """

    def __init__(
        self,
        sales: SalesDensitySource,
        cadastre: Optional[CadastralLookup] = None,
        sales_radius_meters: float = SALES_RADIUS_METERS,
    ):
        self.sales = sales
        self.cadastre = cadastre
        self.sales_radius_meters = sales_radius_meters

    async def _cadastral(self, candidate: Candidate):
        if self.cadastre is None or (candidate.section and candidate.number):
            return
        try:
            parcel = await self.cadastre.parcel_at(candidate.lat, candidate.lng)
        except DEGRADABLE_ERRORS as e:
            logger.debug(f"⚠️ Cadastre lookup failed for {candidate.id}: {e}")
            candidate.enrichment_notes.append("cadastral parcel unavailable")
            return
        if parcel is None:
            candidate.enrichment_notes.append("no cadastral parcel at this point")
            return
        candidate.cadastral = parcel
        candidate.section = candidate.section or parcel.section
        candidate.number = candidate.number or parcel.number

    async def _sales(self, candidate: Candidate):
        try:
            stats = await self.sales.sales_density(candidate.lat, candidate.lng, self.sales_radius_meters)
        except DEGRADABLE_ERRORS as e:
            logger.debug(f"⚠️ Sales density failed for {candidate.id}: {e!r}")
            candidate.enrichment_notes.append("no sales data available")
            return
        if stats is None or stats.count == 0:
            candidate.enrichment_notes.append("no sales data available")
            return
        candidate.sales = stats

    async def enrich(self, candidate: Candidate) -> Candidate:
        start = time.perf_counter()
        await asyncio.gather(self._cadastral(candidate), self._sales(candidate))
        logger.debug(
            f"🏷️ Enriched {candidate.id} in {time.perf_counter() - start:.2f}s "
            f"(cadastre={'yes' if candidate.cadastral else 'no'}, sales={'yes' if candidate.sales else 'no'})"
        )
        return candidate
