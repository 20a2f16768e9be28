from parcel_locator.scorers.density_scorer import density_score
from parcel_locator.scorers.hints_scorer import hints_score
from parcel_locator.scorers.image_scorer import image_score
from parcel_locator.scorers.pool_scorer import PoolScore, pool_score
from parcel_locator.scorers.roof_scorer import roof_score
from parcel_locator.scorers.scoring_orchestrator import CandidateEvaluation, ScoringContext, finalize, score_candidate
from parcel_locator.scorers.terrain_scorer import terrain_score

__all__ = [
    "CandidateEvaluation",
    "PoolScore",
    "ScoringContext",
    "density_score",
    "finalize",
    "hints_score",
    "image_score",
    "pool_score",
    "roof_score",
    "score_candidate",
    "terrain_score",
]
