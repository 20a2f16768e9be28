# parcel_locator/pipeline.py
"""
Pipeline orchestrator.

Sequences extraction, candidate generation, enrichment and scoring for one
request, applies the success / low-confidence / failed decision with a
single expand retry, persists the ranked candidates and finalizes the
request status.

Scoring runs in sequential batches; candidates inside a batch are scored
concurrently. The whole request shares one deadline: when it elapses,
in-flight scoring is cancelled and the sub-scores already computed are kept.
"""
import asyncio
import time
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from loguru import logger

from parcel_locator.capabilities.base import Capabilities, Geocoder
from parcel_locator.config import (
    BATCH_SIZE,
    LOW_CONFIDENCE_THRESHOLD,
    PERSIST_TOP_N,
    REQUEST_DEADLINE_SECONDS,
    RETRY_THRESHOLD,
    SUCCESS_THRESHOLD,
)
from parcel_locator.enricher import Enricher
from parcel_locator.errors import DEGRADABLE_ERRORS, NoCandidatesFound, PipelineFailure
from parcel_locator.explanation import DEADLINE_TEXT, explain
from parcel_locator.extractor import Extractor
from parcel_locator.generators import AddressGenerator, CandidateGenerator, ParcelScanGenerator
from parcel_locator.models import (
    FallbackSuggestions,
    LocalizationInput,
    LocalizationRequest,
    LocalizationResult,
    MatchedParcel,
    Point,
    QueryDescriptor,
    RequestStatus,
    ResultStatus,
    SearchMode,
    UserHints,
)
from parcel_locator.scorers import CandidateEvaluation, ScoringContext, finalize, score_candidate

T = TypeVar("T")


def batch_iter(items: Sequence[T], batch_size: int) -> Iterator[Tuple[int, Sequence[T]]]:
    """
    Yield index and slices of size `batch_size` for batched processing.
    """
    n = len(items)
    for i in range(0, n, batch_size):
        yield i, items[i:i + batch_size]


def rank(parcels: List[MatchedParcel]) -> List[MatchedParcel]:
    """Descending total score; ties keep generation order."""
    return sorted(parcels, key=lambda p: p.total, reverse=True)


@dataclass
class SearchOutcome:
    generated: int
    ranked: List[MatchedParcel]

    @property
    def best(self) -> Optional[MatchedParcel]:
        return self.ranked[0] if self.ranked else None

    @property
    def best_total(self) -> float:
        return self.ranked[0].total if self.ranked else 0.0


class LocalizationPipeline:
    """
    Orchestrates one localization request end to end.

    Capabilities are injected per instance; several pipelines can run side by
    side with different collaborators and rate limits.
    """

    def __init__(
        self,
        capabilities: Capabilities,
        batch_size: int = BATCH_SIZE,
        deadline_seconds: float = REQUEST_DEADLINE_SECONDS,
        success_threshold: float = SUCCESS_THRESHOLD,
        low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
        retry_threshold: float = RETRY_THRESHOLD,
        persist_top_n: int = PERSIST_TOP_N,
        generators: Optional[Dict[SearchMode, CandidateGenerator]] = None,
        closers: Optional[List] = None,
    ):
        self.capabilities = capabilities
        self.batch_size = batch_size
        self.deadline_seconds = deadline_seconds
        self.success_threshold = success_threshold
        self.low_confidence_threshold = low_confidence_threshold
        self.retry_threshold = retry_threshold
        self.persist_top_n = persist_top_n

        self.extractor = Extractor(capabilities.language)
        self.enricher = Enricher(capabilities.sales, capabilities.cadastre)
        self.generators: Dict[SearchMode, CandidateGenerator] = generators or {
            SearchMode.ADDRESS: AddressGenerator(capabilities.geocoder, capabilities.language),
            SearchMode.PARCEL_SCAN: ParcelScanGenerator(capabilities.geocoder, capabilities.parcels),
        }
        self._closers: List = list(closers or [])

    # ------------------------------------------------------------------
    # Status and persistence
    # ------------------------------------------------------------------

    async def _set_status(self, request: LocalizationRequest, status: RequestStatus):
        try:
            await self.capabilities.persistence.update_request_status(request.id, status)
        except Exception as e:
            raise PipelineFailure(f"could not record status {status.value} for {request.id}: {e}") from e
        request.status = status
        logger.debug(f"📌 Request {request.id} -> {status.value}")

    async def _persist(self, request: LocalizationRequest, ranked: List[MatchedParcel]):
        top = ranked[: self.persist_top_n]
        try:
            await self.capabilities.persistence.save_candidates(request.id, top)
        except Exception as e:
            raise PipelineFailure(f"could not persist candidates for {request.id}: {e}") from e

    async def _abort(self, request: LocalizationRequest):
        """Best effort FAILED status after an internal fault."""
        request.status = RequestStatus.FAILED
        try:
            await self.capabilities.persistence.update_request_status(request.id, RequestStatus.FAILED)
        except Exception as e:
            logger.error(f"❌ Could not mark request {request.id} as FAILED: {e}")

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def select_mode(self, inp: LocalizationInput) -> SearchMode:
        """Parcel scan only makes sense with photos to compare; otherwise fall back to address mode."""
        if inp.mode == SearchMode.PARCEL_SCAN and not inp.image_refs:
            logger.warning("⚠️ Parcel-scan requested without photos; using address mode")
            return SearchMode.ADDRESS
        return inp.mode

    async def locate_landmark(self, hints: UserHints, descriptor: QueryDescriptor) -> Optional[Point]:
        """Geocode the hinted landmark once per request."""
        landmark = hints.landmark
        if landmark is None:
            return None
        geocoder: Geocoder = self.capabilities.geocoder
        query = " ".join(part for part in (landmark.name, landmark.kind, descriptor.city, "France") if part)
        try:
            hits = await geocoder.geocode(query, city=descriptor.city, postal_code=descriptor.postal_code)
        except DEGRADABLE_ERRORS as e:
            logger.debug(f"⚠️ Landmark geocoding failed: {e!r}")
            return None
        if not hits:
            return None
        return Point(hits[0].lat, hits[0].lng)

    async def _score_all(
        self, evaluations: List[CandidateEvaluation], ctx: ScoringContext, deadline: float
    ) -> List[CandidateEvaluation]:
        loop = asyncio.get_running_loop()
        started: List[CandidateEvaluation] = []
        for start_idx, batch in batch_iter(evaluations, self.batch_size):
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"⏱️ Deadline reached, {len(evaluations) - start_idx} candidate(s) left unscored")
                break
            logger.debug(f"🔄 Scoring candidates {start_idx}..{start_idx + len(batch) - 1}")
            started.extend(batch)

            tasks = [asyncio.create_task(score_candidate(e, ctx)) for e in batch]
            done, pending = await asyncio.wait(tasks, timeout=remaining)
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(f"⏱️ Deadline reached, {len(pending)} candidate(s) keep partial sub-scores")
            for task in done:
                error = task.exception()
                if error is not None:
                    raise PipelineFailure(f"scoring crashed: {error!r}") from error
        return started

    async def search(
        self,
        descriptor: QueryDescriptor,
        inp: LocalizationInput,
        mode: SearchMode,
        ctx: ScoringContext,
        deadline: float,
        expanded: bool = False,
    ) -> SearchOutcome:
        """Generate, enrich and score one round of candidates."""
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            return SearchOutcome(0, [])

        generator = self.generators[mode]
        try:
            candidates = await asyncio.wait_for(generator.generate(descriptor, inp, expanded=expanded), remaining)
        except asyncio.TimeoutError:
            logger.warning("⏱️ Deadline reached during candidate generation")
            candidates = []
        logger.debug(f"📍 {len(candidates)} candidate(s) from {mode.value} mode (expanded={expanded})")
        if not candidates:
            return SearchOutcome(0, [])

        evaluations = await self._score_all([CandidateEvaluation(c) for c in candidates], ctx, deadline)
        return SearchOutcome(len(candidates), rank([finalize(e) for e in evaluations]))

    def classify(self, total: float, relaxed: bool = False) -> ResultStatus:
        success_at = self.retry_threshold if relaxed else self.success_threshold
        if total >= success_at:
            return ResultStatus.SUCCESS
        if total >= self.low_confidence_threshold:
            return ResultStatus.LOW_CONFIDENCE
        return ResultStatus.FAILED

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, request: LocalizationRequest) -> LocalizationResult:
        """
        Localize one request.

        Args:
            request (LocalizationRequest): A PENDING request.

        Returns:
            LocalizationResult: Status, ranked candidates and explanation.

        Raises:
            PipelineFailure: Persistence unreachable or an unexpected internal fault.
        """
        if request.is_terminal:
            raise ValueError(f"request {request.id} is already {request.status.value}")

        start = time.perf_counter()
        deadline = asyncio.get_running_loop().time() + self.deadline_seconds
        try:
            await self._set_status(request, RequestStatus.RUNNING)
            try:
                result = await self._localize(request, deadline)
            except NoCandidatesFound as e:
                logger.info(f"❌ Request {request.id}: {e}")
                await self._set_status(request, RequestStatus.FAILED)
                return LocalizationResult(
                    request_id=request.id,
                    status=ResultStatus.FAILED,
                    best_candidate=None,
                    candidates=[],
                    explanation=await explain(ResultStatus.FAILED, None, request.input.hints),
                    reason=e.reason,
                )
        except PipelineFailure:
            await self._abort(request)
            raise
        except Exception as e:
            logger.error(f"❌ Request {request.id} crashed: {e!r}")
            await self._abort(request)
            raise PipelineFailure(f"unexpected fault in request {request.id}: {e!r}") from e

        logger.info(
            f"✅ Request {request.id}: {result.status.value} "
            f"(confidence {result.confidence:.1f}) in {time.perf_counter() - start:.2f}s"
        )
        return result

    async def more_candidates(self, request: LocalizationRequest) -> LocalizationResult:
        """
        Relaunch a finished request, never proposing a location it already showed.

        The follow-up is a new request whose `excluded` set accumulates the
        fingerprints persisted for `request` on top of its own exclusions, so
        chained relaunches keep skipping everything shown so far.

        Raises:
            ValueError: `request` has not finished yet.
            PipelineFailure: Persistence unreachable or an unexpected internal fault.
        """
        if not request.is_terminal:
            raise ValueError(f"request {request.id} is still {request.status.value}")
        try:
            shown = await self.capabilities.persistence.shown_fingerprints(request.id)
        except Exception as e:
            raise PipelineFailure(f"could not load candidates shown for {request.id}: {e}") from e

        excluded = set(request.input.excluded) | shown
        follow_up = LocalizationRequest(input=replace(request.input, excluded=excluded))
        logger.debug(f"🔁 Relaunching {request.id} as {follow_up.id}, excluding {len(excluded)} fingerprint(s)")
        return await self.run(follow_up)

    async def _localize(self, request: LocalizationRequest, deadline: float) -> LocalizationResult:
        inp = request.input
        descriptor = await self.extractor.extract(inp.text, inp.hints, inp.url)
        logger.debug(f"📋 Descriptor: {descriptor}")

        mode = self.select_mode(inp)
        ctx = ScoringContext(
            hints=inp.hints,
            photos=list(inp.image_refs),
            comparator=self.capabilities.vision,
            enricher=self.enricher,
            landmark=await self.locate_landmark(inp.hints, descriptor),
        )

        first = await self.search(descriptor, inp, mode, ctx, deadline)
        if first.generated == 0:
            raise NoCandidatesFound(f"no candidates in {mode.value} mode")

        outcome, relaxed, expanded = first, False, False
        if self.classify(first.best_total) != ResultStatus.SUCCESS:
            if asyncio.get_running_loop().time() >= deadline:
                logger.warning("⏱️ Deadline reached, skipping expand retry")
            else:
                logger.debug(f"🔁 Best score {first.best_total:.1f} below success, retrying with an expanded search")
                retry = await self.search(descriptor, inp, mode, ctx, deadline, expanded=True)
                if retry.best is not None and retry.best_total > first.best_total:
                    outcome, expanded = retry, True
                    # the relaxed threshold applies to a retry launched from a low-confidence first pass
                    relaxed = first.best_total >= self.low_confidence_threshold

        if not outcome.ranked:
            await self._set_status(request, RequestStatus.FAILED)
            return LocalizationResult(
                request_id=request.id,
                status=ResultStatus.FAILED,
                best_candidate=None,
                candidates=[],
                explanation=DEADLINE_TEXT,
                reason="DeadlineExceeded",
            )

        best = outcome.best
        status = self.classify(best.total, relaxed=relaxed)
        best.best = status == ResultStatus.SUCCESS

        ranked = outcome.ranked[: self.persist_top_n]
        await self._persist(request, ranked)
        await self._set_status(
            request, RequestStatus.FAILED if status == ResultStatus.FAILED else RequestStatus.DONE
        )

        return LocalizationResult(
            request_id=request.id,
            status=status,
            best_candidate=best,
            candidates=ranked,
            explanation=await explain(status, best, inp.hints, self.capabilities.language),
            confidence=best.total,
            reason=None if status != ResultStatus.FAILED else "BelowThreshold",
            fallback_suggestions=self._suggestions(status, best, expanded),
        )

    @staticmethod
    def _suggestions(status: ResultStatus, best: MatchedParcel, expanded: bool) -> Optional[FallbackSuggestions]:
        density = None
        if status != ResultStatus.SUCCESS and best.candidate.sales is not None:
            density = best.candidate.sales.density_per_km2
        if not expanded and density is None:
            return None
        return FallbackSuggestions(expand_radius=True if expanded else None, dvf_density=density)

    async def close(self):
        for closer in self._closers:
            await closer.close()


def build_default_pipeline(persistence=None, **kwargs) -> LocalizationPipeline:
    """
    Wire the production adapters: Google geocoding, grid parcels, IGN cadastre,
    DVF sales, OpenAI vision and language. Call `close()` when done.
    """
    from parcel_locator.capabilities import (
        CsvStore,
        DvfSalesDensity,
        GoogleGeocoder,
        GridParcelCatalog,
        IgnCadastre,
        OpenAILanguageModel,
        OpenAIVisualComparator,
    )
    from parcel_locator.clients import HttpClient, OpenAIClient

    http = HttpClient()
    openai_client = OpenAIClient()
    capabilities = Capabilities(
        geocoder=GoogleGeocoder(http),
        parcels=GridParcelCatalog(),
        sales=DvfSalesDensity(http),
        vision=OpenAIVisualComparator(openai_client),
        persistence=persistence or CsvStore(),
        cadastre=IgnCadastre(http),
        language=OpenAILanguageModel(openai_client),
    )
    return LocalizationPipeline(capabilities, closers=[http, openai_client], **kwargs)
