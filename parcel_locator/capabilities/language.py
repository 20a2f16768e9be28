"""
Language-model adapter: listing extraction, address extraction, explanations.
"""
import json
from typing import List, Optional

from loguru import logger
from openai import OpenAIError
from pydantic import ValidationError

from parcel_locator.clients import OpenAIClient
from parcel_locator.config import TEXT_MODEL
from parcel_locator.errors import CapabilityError, ExtractionFailure
from parcel_locator.models import MatchedParcel, UserHints
from parcel_locator.schemas import AddressExtraction, ExtractedAddress, ExtractedListing

LISTING_PROMPT = """You extract facts from French real-estate listings.
Return a JSON object with the keys: city, postal_code, property_type (house, apartment,
building, land, commercial), surface_min, surface_max (habitable m2), price_min, price_max (euros).
Use null for anything the text does not state. When a single surface or price is given,
use it for both min and max."""

ADDRESS_PROMPT = """Extract every plausible French postal address mentioned in this listing text.
Return JSON: {"addresses": [{"address": str, "city": str|null, "postal_code": str|null, "confidence": 0-1}]}.
Return an empty list when the text contains no address."""

EXPLANATION_PROMPT = """You explain to a user why a property location was proposed.
Be precise, natural and reassuring in two or three sentences. Use the hints and the score breakdown."""


class OpenAILanguageModel:
    """Language capability used by the extractor, the address generator and the explainer."""

    def __init__(self, client: OpenAIClient, model: str = TEXT_MODEL):
        self.client = client
        self.model = model

    async def extract_listing(self, text: str, url: Optional[str] = None) -> ExtractedListing:
        user = text if not url else f"Listing URL: {url}\n\n{text}"
        try:
            payload = await self.client.json_completion(self.model, user, system=LISTING_PROMPT, max_tokens=200)
            return ExtractedListing.model_validate(payload)
        except (OpenAIError, json.JSONDecodeError, ValidationError) as e:
            raise ExtractionFailure(str(e)) from e

    async def extract_addresses(self, text: str) -> List[ExtractedAddress]:
        try:
            payload = await self.client.json_completion(self.model, text, system=ADDRESS_PROMPT, max_tokens=300)
            return AddressExtraction.model_validate(payload).addresses
        except (OpenAIError, json.JSONDecodeError, ValidationError) as e:
            raise ExtractionFailure(str(e)) from e

    async def explain(self, best: MatchedParcel, hints: UserHints) -> str:
        hint_summary = ", ".join(
            f"{key}: {value}" for key, value in vars(hints).items() if value not in (None, "", "unknown")
        ) or "no hints"
        breakdown = ", ".join(f"{k}: {round(v)}" for k, v in best.breakdown.as_dict().items())
        prompt = (
            f"Address: {best.candidate.address or f'{best.candidate.lat:.5f}, {best.candidate.lng:.5f}'}\n"
            f"Confidence: {round(best.total)}%\n"
            f"User hints: {hint_summary}\n"
            f"Score breakdown: {breakdown}\n"
            f"Evidence: {'; '.join(best.reasons[:8])}"
        )
        try:
            text = await self.client.text_completion(self.model, EXPLANATION_PROMPT, prompt)
        except OpenAIError as e:
            raise CapabilityError("language", str(e)) from e
        if not text:
            logger.debug("LLM returned an empty explanation")
            raise CapabilityError("language", "empty explanation")
        return text
