from typing import Optional

from loguru import logger

from parcel_locator.capabilities.base import LanguageModel
from parcel_locator.errors import DEGRADABLE_ERRORS
from parcel_locator.models import MatchedParcel, ResultStatus, UserHints

NO_CANDIDATES_TEXT = "No candidate location could be generated from the supplied information."
DEADLINE_TEXT = "The search ran out of time before any candidate could be scored."


def describe_location(parcel: MatchedParcel) -> str:
    c = parcel.candidate
    if c.address:
        return c.address
    label = f"{c.lat:.5f}, {c.lng:.5f}"
    if c.section and c.number:
        label += f" (parcel {c.section} {c.number})"
    return label


def fallback_explanation(status: ResultStatus, best: MatchedParcel) -> str:
    """Deterministic text used when no language model is available or it fails."""
    location = describe_location(best)
    if status == ResultStatus.FAILED:
        return f"No convincing location found. Best candidate at {best.total:.0f}%: {location}."
    text = f"Probable at {best.total:.0f}%: {location}."
    if status == ResultStatus.LOW_CONFIDENCE:
        text += " Confidence is low; more photos or hints would help."
    return text


async def explain(
    status: ResultStatus,
    best: Optional[MatchedParcel],
    hints: UserHints,
    language: Optional[LanguageModel] = None,
) -> str:
    """
    Caller-facing explanation of the outcome.

    The language model only writes about a retained candidate (success or
    low-confidence); failures always get the deterministic sentence.
    """
    if best is None:
        return NO_CANDIDATES_TEXT
    if language is None or status == ResultStatus.FAILED:
        return fallback_explanation(status, best)
    try:
        return await language.explain(best, hints)
    except DEGRADABLE_ERRORS as e:
        logger.debug(f"⚠️ Explanation generation failed, using fallback text: {e!r}")
        return fallback_explanation(status, best)
