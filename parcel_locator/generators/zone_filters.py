"""
Filters that narrow a candidate set using hints and the user's search zone.

The hint-based and city filters are advisory: when applying one would
remove every candidate, the unfiltered set is kept. The search-zone filter
is a hard geographic constraint, and so is the exclusion of locations
already shown for the same property.
"""
import unicodedata
from typing import AbstractSet, List, Optional, Sequence, TypeVar

from loguru import logger
from rapidfuzz import fuzz

from parcel_locator.config import CITY_MATCH_MIN_RATIO, DENSE_CENTER_RADIUS_METERS, TOWN_CENTER_MAX_METERS
from parcel_locator.geometry import haversine_meters
from parcel_locator.models import Candidate, Point, QueryDescriptor, SearchZone, UserHints

C = TypeVar("C", bound=Candidate)

DENSE_PLACE_TYPES = {"locality", "sublocality", "sublocality_level_1", "neighborhood", "postal_code"}


def is_dense_center(candidate: Candidate, town_center: Optional[Point]) -> bool:
    """A candidate sitting on a town/district centroid, or close to the town center."""
    if DENSE_PLACE_TYPES.intersection(candidate.place_types):
        return True
    if town_center is None:
        return False
    return haversine_meters(candidate.point, town_center) <= DENSE_CENTER_RADIUS_METERS


def _advisory(name: str, before: Sequence[C], after: List[C]) -> List[C]:
    if before and not after:
        logger.debug(f"🔍 {name} would drop all {len(before)} candidate(s); keeping them unfiltered")
        return list(before)
    if len(after) != len(before):
        logger.debug(f"🔍 {name}: {len(before)} -> {len(after)} candidate(s)")
    return after


def reduce_zone_with_hints(candidates: Sequence[C], hints: UserHints, town_center: Optional[Point]) -> List[C]:
    """
    Drop candidates inconsistent with qualitative hints.

    - isolated_countryside: exclude dense town/district centroids.
    - town_center: exclude candidates far from the town center.
    Other neighborhood types do not filter.
    """
    kind = hints.neighborhood_type
    if kind == "isolated_countryside":
        kept = [c for c in candidates if not is_dense_center(c, town_center)]
    elif kind == "town_center" and town_center is not None:
        kept = [c for c in candidates if haversine_meters(c.point, town_center) <= TOWN_CENTER_MAX_METERS]
    else:
        return list(candidates)
    return _advisory(f"zone reduction ({kind})", candidates, kept)


def in_search_zone(candidate: Candidate, zone: SearchZone) -> bool:
    if zone.is_strict_bounds:
        return zone.bounds.contains(candidate.lat, candidate.lng)
    if zone.radius_km > 0:
        return haversine_meters(candidate.point, Point(zone.lat, zone.lng)) <= zone.radius_km * 1000
    return True


def filter_by_search_zone(candidates: Sequence[C], zone: Optional[SearchZone]) -> List[C]:
    if zone is None:
        return list(candidates)
    kept = [c for c in candidates if in_search_zone(c, zone)]
    if len(kept) != len(candidates):
        logger.debug(f"🔍 Search zone: {len(candidates)} -> {len(kept)} candidate(s)")
    return kept


def filter_excluded(candidates: Sequence[C], excluded: AbstractSet[str]) -> List[C]:
    """Drop locations already shown for this property. Hard filter: may empty the set."""
    if not excluded:
        return list(candidates)
    kept = [c for c in candidates if not (c.fingerprints & excluded)]
    if len(kept) != len(candidates):
        logger.debug(f"🚫 Excluded {len(candidates) - len(kept)} already shown candidate(s)")
    return kept


def normalize_city(city: Optional[str]) -> Optional[str]:
    if not city:
        return None
    stripped = unicodedata.normalize("NFD", city.lower())
    return "".join(ch for ch in stripped if unicodedata.category(ch) != "Mn").strip()


def matches_descriptor(candidate: Candidate, descriptor: QueryDescriptor) -> bool:
    """Postal code decides when both sides have one; otherwise a fuzzy city comparison."""
    if not candidate.city and not candidate.postal_code:
        return True
    if descriptor.postal_code and candidate.postal_code:
        return candidate.postal_code == descriptor.postal_code
    target = normalize_city(descriptor.city)
    if target and candidate.city:
        return fuzz.partial_ratio(target, normalize_city(candidate.city)) >= CITY_MATCH_MIN_RATIO
    return True


def filter_by_city(candidates: Sequence[C], descriptor: QueryDescriptor) -> List[C]:
    if not descriptor.city and not descriptor.postal_code:
        return list(candidates)
    kept = [c for c in candidates if matches_descriptor(c, descriptor)]
    return _advisory("city/postal filter", candidates, kept)
