"""
Hints consistency sub-score.

Starts at the neutral 50 and adds four independent parts:
typology (declared type / semi-detached / construction period give partial
credit), neighborhood plausibility, price and surface against local sales,
and walking distance to a named landmark.
"""
from typing import List, Optional, Tuple

from parcel_locator.config import NEUTRAL_SCORE, WALKING_METERS_PER_MINUTE
from parcel_locator.generators.zone_filters import is_dense_center
from parcel_locator.geometry import haversine_meters
from parcel_locator.models import Candidate, Point, SubScore, UserHints

Part = Tuple[float, List[str]]


def typology_part(hints: UserHints) -> Part:
    credit = 0.0
    if hints.property_type:
        credit += 0.3
    if hints.semi_detached is not None:
        credit += 0.2
    if hints.construction_period and hints.construction_period != "unknown":
        credit += 0.1
    if credit == 0:
        return 0.0, []
    return credit * 20, [f"typology hints provided ({credit:.0%} credit)"]


def neighborhood_part(candidate: Candidate, hints: UserHints) -> Part:
    kind = hints.neighborhood_type
    if not kind or kind == "unknown":
        return 0.0, []
    if kind == "isolated_countryside" and is_dense_center(candidate, None):
        return -10.0, ["dense town centroid, unlikely for isolated countryside"]
    return 5.0, [f"neighborhood plausible for '{kind}'"]


def sales_consistency(candidate: Candidate, hints: UserHints) -> Optional[float]:
    """
    Price/surface agreement with local sales, in [0, 1] with 0.5 neutral.

    Local average price within the price range +/-20% adds 0.3, the last
    sale's surface within the surface range +/-10% adds 0.2; outside,
    the penalty grows with the relative deviation. None when nothing to compare.
    """
    stats = candidate.sales
    if stats is None:
        return None

    score = 0.5
    compared = False
    price = hints.price_range
    if price is not None and price.is_bounded and stats.avg_price:
        compared = True
        if price.contains(stats.avg_price, tolerance=0.2):
            score += 0.3
        else:
            score -= min(0.3, price.relative_deviation(stats.avg_price) * 0.5)

    surface = hints.surface_range
    last_surface = stats.last_sale.surface if stats.last_sale else None
    if surface is not None and surface.is_bounded and last_surface:
        compared = True
        if surface.contains(last_surface, tolerance=0.1):
            score += 0.2
        else:
            score -= min(0.2, surface.relative_deviation(last_surface) * 0.3)

    if not compared:
        return None
    return max(0.0, min(1.0, score))


def sales_part(candidate: Candidate, hints: UserHints) -> Part:
    if hints.price_range is None and hints.surface_range is None:
        return 0.0, []
    if candidate.sales is None:
        return 0.0, ["no sales data available"]
    consistency = sales_consistency(candidate, hints)
    if consistency is None:
        return 0.0, []
    delta = (consistency - 0.5) * 40
    if consistency > 0.7:
        return delta, ["price and surface consistent with local sales"]
    if consistency < 0.3:
        return delta, ["price or surface far from local sales"]
    return delta, ["price and surface partly consistent with local sales"]


def landmark_part(candidate: Candidate, hints: UserHints, landmark: Optional[Point]) -> Part:
    if hints.landmark is None or landmark is None:
        return 0.0, []
    minutes = haversine_meters(candidate.point, landmark) / WALKING_METERS_PER_MINUTE
    gap = abs(minutes - hints.landmark.walking_minutes)
    if gap <= 2:
        delta = 10.0
    elif gap <= 5:
        delta = 5.0
    elif gap <= 10:
        delta = -2.0
    else:
        delta = -8.0
    return delta, [f"about {minutes:.0f} min walk from {hints.landmark.name}"]


def hints_score(candidate: Candidate, hints: UserHints, landmark: Optional[Point] = None) -> SubScore:
    score = NEUTRAL_SCORE
    reasons: List[str] = []
    for delta, part_reasons in (
        typology_part(hints),
        neighborhood_part(candidate, hints),
        sales_part(candidate, hints),
        landmark_part(candidate, hints, landmark),
    ):
        score += delta
        reasons.extend(part_reasons)
    return SubScore(score, reasons)
