# parcel_locator/scorers/scoring_orchestrator.py
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from parcel_locator.capabilities.base import VisualComparator
from parcel_locator.config import NEUTRAL_SCORE, SCORE_WEIGHTS
from parcel_locator.enricher import Enricher
from parcel_locator.models import Candidate, MatchedParcel, Point, ScoreBreakdown, SubScore, UserHints
from parcel_locator.scorers.density_scorer import density_score
from parcel_locator.scorers.hints_scorer import hints_score
from parcel_locator.scorers.image_scorer import image_score
from parcel_locator.scorers.pool_scorer import PoolScore, pool_score
from parcel_locator.scorers.roof_scorer import roof_score
from parcel_locator.scorers.terrain_scorer import terrain_score


@dataclass
class ScoringContext:
    """Request-wide inputs shared read-only by every candidate evaluation."""
    hints: UserHints
    photos: List[str]
    comparator: VisualComparator
    enricher: Enricher
    landmark: Optional[Point] = None


@dataclass
class CandidateEvaluation:
    """
    Working state of one candidate, owned by the task scoring it.
    Sub-scores land here as soon as they are computed, so whatever finished
    before a deadline survives cancellation.
    """
    candidate: Candidate
    subscores: Dict[str, SubScore] = field(default_factory=dict)
    pool_in_photo: Optional[bool] = None
    pool_in_imagery: Optional[bool] = None


async def score_candidate(evaluation: CandidateEvaluation, ctx: ScoringContext) -> CandidateEvaluation:
    """
    Enrich one candidate and compute its six sub-scores.

    Vision sub-scores run alongside enrichment; terrain, hints and density
    wait for it since they read the cadastral and sales context.

    Args:
        evaluation (CandidateEvaluation): Candidate plus the sub-score sink.
        ctx (ScoringContext): Hints, photos and capabilities for this request.

    Returns:
        CandidateEvaluation: The same object, filled in.
    """
    candidate = evaluation.candidate
    start = time.perf_counter()

    async def image():
        evaluation.subscores["image"] = await image_score(candidate, ctx.photos, ctx.comparator)

    async def pool():
        result: PoolScore = await pool_score(candidate, ctx.photos, ctx.hints, ctx.comparator)
        evaluation.pool_in_photo = result.pool_in_photo
        evaluation.pool_in_imagery = result.pool_in_imagery
        evaluation.subscores["pool"] = SubScore(result.score, result.reasons)

    async def roof():
        evaluation.subscores["roof"] = await roof_score(candidate, ctx.photos, ctx.comparator)

    async def enriched_scores():
        await ctx.enricher.enrich(candidate)
        evaluation.subscores["hints"] = hints_score(candidate, ctx.hints, ctx.landmark)
        evaluation.subscores["density"] = density_score(candidate)
        evaluation.subscores["terrain"] = await terrain_score(candidate, ctx.photos, ctx.hints, ctx.comparator)

    await asyncio.gather(image(), pool(), roof(), enriched_scores())
    logger.debug(f"🧮 Scored {candidate.id} in {time.perf_counter() - start:.2f}s")
    return evaluation


def finalize(evaluation: CandidateEvaluation) -> MatchedParcel:
    """Join a candidate with its breakdown; sub-scores never computed count as neutral."""
    subscores = dict(evaluation.subscores)
    for name in SCORE_WEIGHTS:
        if name not in subscores:
            subscores[name] = SubScore(NEUTRAL_SCORE, [f"{name} not scored before the deadline"])
    return MatchedParcel(
        candidate=evaluation.candidate,
        breakdown=ScoreBreakdown.from_subscores(subscores),
        pool_in_photo=evaluation.pool_in_photo,
        pool_in_imagery=evaluation.pool_in_imagery,
    )
