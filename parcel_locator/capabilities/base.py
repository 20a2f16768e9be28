# parcel_locator/capabilities/base.py
"""
Capability interfaces consumed by the localization core.

Purpose
-------
Every network collaborator (geocoding, parcel catalog, cadastre, sales
density, visual comparison, language model, persistence) is described by a
small Protocol. The pipeline receives concrete implementations through a
`Capabilities` bundle, so tests plug deterministic fakes in and production
wires the HTTP/OpenAI adapters from this package.

Invariants & Guardrails
-----------------------
- Implementations return the validated models from `parcel_locator.schemas`.
- Implementations raise `CapabilityError` (or a subclass) on any failure;
  "no data" is a legitimate answer (`None` or `[]`), not an error.
"""

from __future__ import annotations

from collections.abc import Sequence, Set
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol

from parcel_locator.schemas import (
    CadastralParcel,
    ExtractedAddress,
    ExtractedListing,
    GeocodeHit,
    ImageJudgement,
    ParcelRecord,
    ReverseGeocodeHit,
    SalesStats,
)

if TYPE_CHECKING:
    from parcel_locator.models import BoundingBox, MatchedParcel, RequestStatus, UserHints


class Geocoder(Protocol):
    async def geocode(
        self, query: str, city: Optional[str] = None, postal_code: Optional[str] = None
    ) -> list[GeocodeHit]: ...

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[ReverseGeocodeHit]: ...


class ParcelCatalog(Protocol):
    async def parcels_in_bbox(self, bbox: BoundingBox) -> list[ParcelRecord]: ...


class CadastralLookup(Protocol):
    async def parcel_at(self, lat: float, lng: float) -> Optional[CadastralParcel]: ...


class SalesDensitySource(Protocol):
    async def sales_density(self, lat: float, lng: float, radius_meters: float) -> Optional[SalesStats]: ...


class VisualComparator(Protocol):
    async def compare(self, reference: Optional[str], candidate: str, instruction: str) -> ImageJudgement: ...


class LanguageModel(Protocol):
    async def extract_listing(self, text: str, url: Optional[str] = None) -> ExtractedListing: ...

    async def extract_addresses(self, text: str) -> list[ExtractedAddress]: ...

    async def explain(self, best: MatchedParcel, hints: UserHints) -> str: ...


class Persistence(Protocol):
    async def save_candidates(self, request_id: str, parcels: Sequence[MatchedParcel]) -> None: ...

    async def update_request_status(self, request_id: str, status: RequestStatus) -> None: ...

    async def shown_fingerprints(self, request_id: str) -> Set[str]: ...


@dataclass
class Capabilities:
    """Per-pipeline bundle of collaborators. `language` and `cadastre` are optional."""

    geocoder: Geocoder
    parcels: ParcelCatalog
    sales: SalesDensitySource
    vision: VisualComparator
    persistence: Persistence
    cadastre: Optional[CadastralLookup] = None
    language: Optional[LanguageModel] = None
