from typing import List, Optional

from loguru import logger

from parcel_locator.capabilities.base import VisualComparator
from parcel_locator.capabilities.vision import TERRAIN_INSTRUCTION
from parcel_locator.config import NEUTRAL_SCORE
from parcel_locator.errors import DEGRADABLE_ERRORS
from parcel_locator.geometry import polygon_area_m2
from parcel_locator.models import Candidate, SubScore, UserHints


def estimated_surface_m2(candidate: Candidate) -> Optional[float]:
    """Parcel surface from its polygon, else from the cadastral record."""
    area = polygon_area_m2(candidate.polygon)
    if area > 0:
        return area
    if candidate.cadastral and candidate.cadastral.surface_m2:
        return candidate.cadastral.surface_m2
    return None


async def _visual_part(candidate: Candidate, photos: List[str], comparator: VisualComparator):
    if not photos or not candidate.image_ref:
        return 0.0, []
    try:
        judgement = await comparator.compare(photos[0], candidate.image_ref, TERRAIN_INSTRUCTION)
    except DEGRADABLE_ERRORS as e:
        logger.debug(f"⚠️ Terrain comparison failed for {candidate.id}: {e!r}")
        return 0.0, ["terrain comparison unavailable"]

    user_terrain = judgement.reference.terrain if judgement.reference else None
    seen_terrain = judgement.candidate.terrain if judgement.candidate else None
    if user_terrain is None or seen_terrain is None:
        return 0.0, []

    delta, reasons = 0.0, []
    if user_terrain.shape and seen_terrain.shape and user_terrain.shape.lower() == seen_terrain.shape.lower():
        delta += 15
        reasons.append(f"matching terrain shape: {seen_terrain.shape}")
    if user_terrain.has_terrace is not None and user_terrain.has_terrace == seen_terrain.has_terrace:
        delta += 10
        reasons.append("terrace presence consistent")
    return delta, reasons


async def terrain_score(
    candidate: Candidate, photos: List[str], hints: UserHints, comparator: VisualComparator
) -> SubScore:
    """
    Terrain shape and terrace agreement between photo and imagery, plus the
    estimated parcel surface against the terrain-surface hint.

    Args:
        candidate (Candidate): Candidate, enriched when a cadastral surface is wanted.
        photos (List[str]): User photos; the visual part is skipped without them.
        hints (UserHints): Source of the terrain surface range.
        comparator (VisualComparator): Vision capability.

    Returns:
        SubScore: 50 +15 shape +10 terrace, +15 / -10 for the surface check.
    """
    delta, reasons = await _visual_part(candidate, photos, comparator)

    wanted = hints.terrain_surface_range
    if wanted is not None:
        surface = estimated_surface_m2(candidate)
        if surface is None:
            reasons.append("parcel surface unknown")
        elif wanted.contains(surface, tolerance=0.1):
            delta += 15
            reasons.append(f"terrain surface consistent (about {surface:.0f} m2)")
        else:
            delta -= 10
            low = f"{wanted.min:.0f}" if wanted.min is not None else "?"
            high = f"{wanted.max:.0f}" if wanted.max is not None else "?"
            reasons.append(f"terrain surface differs (about {surface:.0f} m2, expected {low}-{high} m2)")

    return SubScore(NEUTRAL_SCORE + delta, reasons)
