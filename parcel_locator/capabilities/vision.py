"""
Visual comparison adapter backed by an OpenAI vision model.
"""
import json
import time
from typing import Any, Dict, List, Optional

from loguru import logger
from openai import OpenAIError
from pydantic import ValidationError

from parcel_locator.clients import OpenAIClient
from parcel_locator.config import VISION_MODEL
from parcel_locator.errors import VisualComparisonFailure
from parcel_locator.schemas import ImageJudgement

RESPONSE_SCHEMA = """Respond with JSON only, using this shape (omit what you cannot see):
{"similarity": 0-1,
 "reference": {"pool": {"present": bool, "confidence": 0-1, "shape": "rectangular|round|other"},
               "roof": {"color": str, "shape": str},
               "terrain": {"shape": str, "has_terrace": bool}},
 "candidate": {same keys as reference},
 "rationale": short string}
"reference" describes the user's photo (first image, when given), "candidate" the aerial view."""

IMAGE_SIMILARITY_INSTRUCTION = (
    "Compare a property photo supplied by a user with an aerial view of a candidate parcel. "
    "Rate the overall similarity (architecture, surroundings, relative layout of buildings, "
    "garden and outbuildings) from 0 (unrelated) to 1 (same property)."
)

POOL_INSTRUCTION = (
    "Detect whether a swimming pool is visible on each image. For each, report presence, "
    "your confidence and the pool shape."
)

ROOF_INSTRUCTION = (
    "Describe the main roof on each image: dominant color (red, grey, black, brown...) and "
    "shape (gable, hip, flat, mansard...). Use single lowercase words."
)

TERRAIN_INSTRUCTION = (
    "Describe the plot on each image: overall terrain shape (rectangular, square, irregular, "
    "triangular, l-shaped) and whether a terrace or patio is visible."
)


class OpenAIVisualComparator:
    """Visual comparison capability: one vision call per (reference, candidate, instruction)."""

    def __init__(self, client: OpenAIClient, model: str = VISION_MODEL):
        self.client = client
        self.model = model

    async def compare(self, reference: Optional[str], candidate: str, instruction: str) -> ImageJudgement:
        """
        Judge a candidate image, optionally against a reference photo.

        Args:
            reference: User photo URL/data URI, or None to analyse the candidate alone.
            candidate: Candidate imagery URL.
            instruction: What to look at.

        Returns:
            ImageJudgement: Validated similarity and per-image attributes.
        """
        start = time.perf_counter()
        content: List[Dict[str, Any]] = [{"type": "text", "text": f"{instruction}\n\n{RESPONSE_SCHEMA}"}]
        if reference:
            content.append({"type": "image_url", "image_url": {"url": reference}})
        content.append({"type": "image_url", "image_url": {"url": candidate}})

        try:
            payload = await self.client.json_completion(self.model, content, max_tokens=300)
            judgement = ImageJudgement.model_validate(payload)
        except (OpenAIError, json.JSONDecodeError, ValidationError) as e:
            raise VisualComparisonFailure(str(e)) from e

        logger.debug(f"👁️ Vision call done in {time.perf_counter() - start:.2f}s (similarity={judgement.similarity:.2f})")
        return judgement
