from typing import List

from loguru import logger

from parcel_locator.capabilities.base import VisualComparator
from parcel_locator.capabilities.vision import ROOF_INSTRUCTION
from parcel_locator.config import NEUTRAL_SCORE
from parcel_locator.errors import DEGRADABLE_ERRORS
from parcel_locator.models import Candidate, SubScore


def _same(a, b) -> bool:
    return a.strip().lower() == b.strip().lower()


async def roof_score(candidate: Candidate, photos: List[str], comparator: VisualComparator) -> SubScore:
    """
    Compare roof color and shape between the user photo and the imagery.
    Color agreement +20 (disagreement -10), shape agreement +15, from 50.
    """
    if not photos or not candidate.image_ref:
        return SubScore(NEUTRAL_SCORE, [])

    try:
        judgement = await comparator.compare(photos[0], candidate.image_ref, ROOF_INSTRUCTION)
    except DEGRADABLE_ERRORS as e:
        logger.debug(f"⚠️ Roof comparison failed for {candidate.id}: {e!r}")
        return SubScore(NEUTRAL_SCORE, ["roof comparison unavailable"])

    user_roof = judgement.reference.roof if judgement.reference else None
    seen_roof = judgement.candidate.roof if judgement.candidate else None
    if user_roof is None or seen_roof is None:
        return SubScore(NEUTRAL_SCORE, ["roof not visible on both images"])

    score = NEUTRAL_SCORE
    reasons: List[str] = []
    if user_roof.color and seen_roof.color:
        if _same(user_roof.color, seen_roof.color):
            score += 20
            reasons.append(f"matching roof color: {seen_roof.color}")
        else:
            score -= 10
            reasons.append(f"different roof color (photo: {user_roof.color}, imagery: {seen_roof.color})")
    if user_roof.shape and seen_roof.shape and _same(user_roof.shape, seen_roof.shape):
        score += 15
        reasons.append(f"matching roof shape: {seen_roof.shape}")
    return SubScore(score, reasons)
