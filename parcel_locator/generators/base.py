# parcel_locator/generators/base.py
"""
Candidate generator interface.

Both strategies take the canonical descriptor plus the raw input and return
a (possibly empty) list of candidates. `expanded=True` asks for the single
widened search used by the expand retry: larger area, relaxed filters.
An empty list is a normal answer, reported to the orchestrator.
"""

from __future__ import annotations

from typing import Protocol

from parcel_locator.models import Candidate, LocalizationInput, QueryDescriptor


class CandidateGenerator(Protocol):
    async def generate(
        self, descriptor: QueryDescriptor, request: LocalizationInput, expanded: bool = False
    ) -> list[Candidate]: ...
