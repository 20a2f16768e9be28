import re
from typing import Optional

from loguru import logger

from parcel_locator.capabilities.base import LanguageModel
from parcel_locator.errors import CAPABILITY_ERRORS
from parcel_locator.models import NumericRange, QueryDescriptor, UserHints
from parcel_locator.schemas import ExtractedListing

POSTAL_CODE_RE = re.compile(r"\b(\d{5})\b")


def _range(low: Optional[float], high: Optional[float]) -> Optional[NumericRange]:
    if low is None and high is None:
        return None
    return NumericRange(low, high)


def descriptor_from_hints(hints: UserHints) -> QueryDescriptor:
    return QueryDescriptor(
        city=hints.city,
        postal_code=hints.postal_code,
        property_type=hints.property_type,
        surface_range=hints.surface_range,
        price_range=hints.price_range,
    )


def merge_descriptor(hinted: QueryDescriptor, extracted: ExtractedListing) -> QueryDescriptor:
    """Fill the fields hints left unset. Hints always win over text."""
    return QueryDescriptor(
        city=hinted.city or extracted.city,
        postal_code=hinted.postal_code or extracted.postal_code,
        property_type=hinted.property_type or extracted.property_type,
        surface_range=hinted.surface_range or _range(extracted.surface_min, extracted.surface_max),
        price_range=hinted.price_range or _range(extracted.price_min, extracted.price_max),
    )


class Extractor:
    """
    Turns raw text and hints into a canonical QueryDescriptor.

    The language model is only consulted when text is present and the hints
    leave at least one descriptor field unset. Extraction failures are never
    fatal: the descriptor simply stays emptier.
    """

    def __init__(self, language: Optional[LanguageModel] = None):
        self.language = language

    async def extract(self, text: Optional[str], hints: UserHints, url: Optional[str] = None) -> QueryDescriptor:
        descriptor = descriptor_from_hints(hints)
        if not text or descriptor.is_complete:
            return descriptor

        extracted = ExtractedListing()
        if self.language is not None:
            try:
                extracted = await self.language.extract_listing(text, url)
                logger.debug(f"📋 Extracted listing facts: {extracted.model_dump(exclude_none=True)}")
            except CAPABILITY_ERRORS as e:
                logger.debug(f"⚠️ Listing extraction failed, continuing with hints only: {e}")

        if not extracted.postal_code:
            match = POSTAL_CODE_RE.search(text)
            if match:
                extracted = extracted.model_copy(update={"postal_code": match.group(1)})

        return merge_descriptor(descriptor, extracted)
