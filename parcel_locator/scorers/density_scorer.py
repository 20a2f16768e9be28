from parcel_locator.config import HIGH_DENSITY_PER_KM2, LOW_DENSITY_PER_KM2, NEUTRAL_SCORE
from parcel_locator.models import Candidate, SubScore


def density_score(candidate: Candidate) -> SubScore:
    """Local sales density: 50 + 5 per sale/km2, capped at 100. Neutral without sales data."""
    stats = candidate.sales
    if stats is None:
        return SubScore(NEUTRAL_SCORE, ["no sales data available"])

    density = stats.density_per_km2
    score = min(100.0, NEUTRAL_SCORE + 5 * density)
    if density >= HIGH_DENSITY_PER_KM2:
        reason = f"high sales activity ({stats.count} sales nearby)"
    elif density <= LOW_DENSITY_PER_KM2:
        reason = f"low sales activity ({stats.count} sales nearby)"
    else:
        reason = f"moderate sales activity ({stats.count} sales nearby)"
    return SubScore(score, [reason])
