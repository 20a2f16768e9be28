from typing import List

from loguru import logger

from parcel_locator.capabilities.base import VisualComparator
from parcel_locator.capabilities.vision import IMAGE_SIMILARITY_INSTRUCTION
from parcel_locator.config import NEUTRAL_SCORE
from parcel_locator.errors import DEGRADABLE_ERRORS
from parcel_locator.models import Candidate, SubScore


async def image_score(candidate: Candidate, photos: List[str], comparator: VisualComparator) -> SubScore:
    """
    Overall visual similarity between the first user photo and the candidate's imagery.

    Args:
        candidate (Candidate): Candidate with an imagery reference.
        photos (List[str]): User photo references, possibly empty.
        comparator (VisualComparator): Vision capability.

    Returns:
        SubScore: similarity * 100, or neutral without photos or on failure.
    """
    if not photos:
        return SubScore(NEUTRAL_SCORE, ["no photo supplied, image similarity neutral"])
    if not candidate.image_ref:
        return SubScore(NEUTRAL_SCORE, ["no imagery for candidate, image similarity neutral"])

    try:
        judgement = await comparator.compare(photos[0], candidate.image_ref, IMAGE_SIMILARITY_INSTRUCTION)
    except DEGRADABLE_ERRORS as e:
        logger.debug(f"⚠️ Image comparison failed for {candidate.id}: {e!r}")
        return SubScore(NEUTRAL_SCORE, ["image comparison unavailable"])

    score = judgement.similarity * 100
    if judgement.similarity > 0.7:
        reason = f"high visual similarity with the photo ({score:.0f}%)"
    elif judgement.similarity < 0.3:
        reason = f"low visual similarity with the photo ({score:.0f}%)"
    else:
        reason = f"moderate visual similarity with the photo ({score:.0f}%)"
    return SubScore(score, [reason])
