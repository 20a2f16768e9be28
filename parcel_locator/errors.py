# parcel_locator/errors.py
"""
Exception taxonomy for the localization pipeline.

Capability-level errors are caught at the smallest scope (one sub-score of
one candidate) and turned into neutral scores. Only `PipelineFailure`
escapes the orchestrator; `NoCandidatesFound` becomes a `failed` result.
"""

from __future__ import annotations

import asyncio


class LocalizationError(RuntimeError):
    """Base class for all localization failures."""


class CapabilityError(LocalizationError):
    """An external capability call failed or returned an unusable payload."""

    def __init__(self, capability: str, message: str):
        super().__init__(f"{capability}: {message}")
        self.capability = capability


class ExtractionFailure(CapabilityError):
    """Nothing usable could be extracted from the free text."""

    def __init__(self, message: str):
        super().__init__("extraction", message)


class EnrichmentPartialFailure(CapabilityError):
    """Cadastral or sales context could not be fetched for one candidate."""


class VisualComparisonFailure(CapabilityError):
    """The visual comparison capability failed for one image pair."""

    def __init__(self, message: str):
        super().__init__("visual-comparison", message)


class NoCandidatesFound(LocalizationError):
    """The candidate generator produced nothing to score."""

    reason = "NoCandidatesFound"


class PipelineFailure(LocalizationError):
    """Unexpected internal fault (e.g. persistence unreachable)."""


# Selector tuple for grouped exception handling in scorers and the enricher
CAPABILITY_ERRORS = (
    CapabilityError,
    ExtractionFailure,
    EnrichmentPartialFailure,
    VisualComparisonFailure,
)

# Capability errors plus raw timeouts from adapters that do not wrap them
DEGRADABLE_ERRORS = CAPABILITY_ERRORS + (asyncio.TimeoutError,)
