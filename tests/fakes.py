"""
Deterministic capability doubles shared by the test suite.
"""
import asyncio
from typing import Callable, Dict, List, Optional

from parcel_locator.errors import ExtractionFailure, VisualComparisonFailure
from parcel_locator.models import Candidate
from parcel_locator.schemas import (
    CadastralParcel,
    ExtractedListing,
    GeocodeHit,
    ImageJudgement,
    ParcelRecord,
    ReverseGeocodeHit,
    SalesStats,
)

PARIS = (48.8566, 2.3522)


class FakeGeocoder:
    def __init__(
        self,
        hits: Optional[Dict[str, List[GeocodeHit]]] = None,
        default: Optional[List[GeocodeHit]] = None,
        reverse: Optional[Callable[[float, float], Optional[ReverseGeocodeHit]]] = None,
    ):
        self.hits = hits or {}
        self.default = default if default is not None else []
        self.reverse = reverse
        self.queries: List[str] = []
        self.reverse_calls = 0

    async def geocode(self, query, city=None, postal_code=None):
        self.queries.append(query)
        return list(self.hits.get(query, self.default))

    async def reverse_geocode(self, lat, lng):
        self.reverse_calls += 1
        return self.reverse(lat, lng) if self.reverse else None


class FakeCatalog:
    def __init__(self, records: List[ParcelRecord]):
        self.records = records
        self.bboxes = []

    async def parcels_in_bbox(self, bbox):
        self.bboxes.append(bbox)
        return list(self.records)


class FakeSales:
    """Returns `stats` everywhere, except at coordinates listed in `timeouts`."""

    def __init__(self, stats: Optional[SalesStats] = None, timeouts=()):
        self.stats = stats
        self.timeouts = set(timeouts)
        self.calls = 0

    async def sales_density(self, lat, lng, radius_meters):
        self.calls += 1
        if (lat, lng) in self.timeouts:
            raise asyncio.TimeoutError()
        return self.stats


class FakeCadastre:
    def __init__(self, parcel: Optional[CadastralParcel] = None):
        self.parcel = parcel

    async def parcel_at(self, lat, lng):
        return self.parcel


class FakeVision:
    """Answers by instruction keyword; `fail` makes every call raise."""

    def __init__(self, judgement: Optional[ImageJudgement] = None, fail: bool = False):
        self.judgement = judgement or ImageJudgement(similarity=0.5)
        self.fail = fail
        self.calls = []

    async def compare(self, reference, candidate, instruction):
        self.calls.append((reference, candidate, instruction))
        if self.fail:
            raise VisualComparisonFailure("vision offline")
        return self.judgement


class FakeLanguage:
    def __init__(self, listing=None, addresses=None, explanation="Because it matches.", fail=False):
        self.listing = listing or ExtractedListing()
        self.addresses = addresses or []
        self.explanation = explanation
        self.fail = fail
        self.listing_calls = 0

    async def extract_listing(self, text, url=None):
        self.listing_calls += 1
        if self.fail:
            raise ExtractionFailure("model unavailable")
        return self.listing

    async def extract_addresses(self, text):
        return list(self.addresses)

    async def explain(self, best, hints):
        return self.explanation


class FixedGenerator:
    """Candidate generator returning fixed lists for the first pass and the expanded retry."""

    def __init__(self, first: List[Candidate], expanded: Optional[List[Candidate]] = None):
        self.first = first
        self.expanded = expanded if expanded is not None else first
        self.calls: List[bool] = []

    async def generate(self, descriptor, request, expanded=False):
        self.calls.append(expanded)
        return list(self.expanded if expanded else self.first)


def hit(lat, lng, address="", score=0.8, postal_code=None, city=None, place_types=None) -> GeocodeHit:
    return GeocodeHit(
        lat=lat, lng=lng, address=address, score=score,
        postal_code=postal_code, city=city, place_types=place_types or [],
    )


