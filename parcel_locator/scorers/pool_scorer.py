"""
Pool sub-score.

Pool presence is detected on the candidate's imagery, and on the first user
photo when one is supplied, with a single vision call. The outcome is then
read against the pool hint:

- hint "none": imagery pool -30, no pool +10
- hint rectangular/round: pool on both sides +30 (+10 when the shape matches
  the hint), pool on one side only +15 (imagery) or +10 (photo), no pool at
  all -30
- no hint: small bonus when a pool shows up on either side

Without photos the hint stands in for the photo side.
"""
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from parcel_locator.capabilities.base import VisualComparator
from parcel_locator.capabilities.vision import POOL_INSTRUCTION
from parcel_locator.config import NEUTRAL_SCORE, POOL_CONFIDENCE_MIN
from parcel_locator.errors import DEGRADABLE_ERRORS
from parcel_locator.models import Candidate, PoolState, SubScore, UserHints
from parcel_locator.schemas import ImageAttributes, PoolAttributes


@dataclass
class PoolScore(SubScore):
    pool_in_photo: Optional[bool] = None
    pool_in_imagery: Optional[bool] = None


def _detected(attributes: Optional[ImageAttributes]) -> Optional[PoolAttributes]:
    if attributes is None or attributes.pool is None:
        return None
    pool = attributes.pool
    return pool if pool.present and pool.confidence >= POOL_CONFIDENCE_MIN else None


async def pool_score(
    candidate: Candidate, photos: List[str], hints: UserHints, comparator: VisualComparator
) -> PoolScore:
    if not candidate.image_ref:
        return PoolScore(NEUTRAL_SCORE, ["no imagery for candidate, pool neutral"])
    if hints.pool == PoolState.UNKNOWN and not photos:
        return PoolScore(NEUTRAL_SCORE, [])

    reference = photos[0] if photos else None
    try:
        judgement = await comparator.compare(reference, candidate.image_ref, POOL_INSTRUCTION)
    except DEGRADABLE_ERRORS as e:
        logger.debug(f"⚠️ Pool detection failed for {candidate.id}: {e!r}")
        return PoolScore(NEUTRAL_SCORE, ["pool detection unavailable"])

    imagery_pool = _detected(judgement.candidate)
    photo_pool = _detected(judgement.reference) if photos else None
    in_imagery = imagery_pool is not None
    in_photo = photo_pool is not None if photos else None

    score = NEUTRAL_SCORE
    reasons: List[str] = []

    if hints.pool == PoolState.NONE:
        if in_imagery:
            score -= 30
            reasons.append("pool visible on imagery but hints say there is none")
        else:
            score += 10
            reasons.append("no pool on imagery, consistent with hints")

    elif hints.declares_pool:
        # without photos the declared pool plays the photo's part
        photo_side = bool(in_photo) if photos else in_imagery
        if photo_side and in_imagery:
            score += 30
            reasons.append("pool seen on both the photo and the imagery")
            shape = (photo_pool or imagery_pool).shape
            if shape == hints.pool.value:
                score += 10
                reasons.append(f"{shape} pool shape confirmed")
        elif in_imagery:
            score += 15
            reasons.append("pool visible on imagery")
        elif photo_side:
            score += 10
            reasons.append("pool on the photo only, may be hidden on imagery")
        else:
            score -= 30
            reasons.append("no pool detected although hints declare one")

    else:
        if in_photo:
            score += 5
            reasons.append("pool detected on the photo")
        elif in_imagery:
            score += 5
            reasons.append("pool detected on imagery")

    return PoolScore(score, reasons, pool_in_photo=in_photo, pool_in_imagery=in_imagery)
