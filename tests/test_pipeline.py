import asyncio
import json
import math
import time
from typing import Dict
from unittest.mock import AsyncMock, patch

import pytest

from parcel_locator.capabilities import DvfSalesDensity, GoogleGeocoder
from parcel_locator.config import SCORE_WEIGHTS
from parcel_locator.errors import PipelineFailure
from parcel_locator.models import (
    Candidate,
    LocalizationInput,
    LocalizationRequest,
    RequestStatus,
    ResultStatus,
    SearchMode,
    SubScore,
    UserHints,
)
from parcel_locator.pipeline import LocalizationPipeline
from parcel_locator.schemas import SalesStats
from tests.fakes import FakeGeocoder, FakeLanguage, FakeSales, FixedGenerator, hit


def _candidates(*ids):
    return [Candidate(lat=44.0 + i * 0.01, lng=1.0, id=cid, address=f"{cid} street") for i, cid in enumerate(ids)]


def fixed_scorer(totals: Dict[str, float]):
    """Scoring double: every sub-score equals the candidate's target total."""
    async def _score(evaluation, ctx):
        value = totals[evaluation.candidate.id]
        for name in SCORE_WEIGHTS:
            evaluation.subscores[name] = SubScore(value, [])
        return evaluation
    return _score


def _pipeline(capabilities, generator, **kwargs):
    generators = {SearchMode.ADDRESS: generator, SearchMode.PARCEL_SCAN: generator}
    return LocalizationPipeline(capabilities, generators=generators, **kwargs)


def _request(**kwargs):
    return LocalizationRequest(input=LocalizationInput(**kwargs))


@pytest.mark.asyncio
async def test_no_candidates_fails_without_retry(capabilities, store):
    generator = FixedGenerator([])
    request = _request(text="Maison a vendre")

    result = await _pipeline(capabilities, generator).run(request)

    assert result.status == ResultStatus.FAILED
    assert result.reason == "NoCandidatesFound"
    assert result.best_candidate is None
    assert generator.calls == [False]
    assert request.status == RequestStatus.FAILED
    assert store.status_history[request.id] == [RequestStatus.RUNNING, RequestStatus.FAILED]
    assert request.id not in store.candidates


@pytest.mark.asyncio
async def test_score_of_exactly_sixty_is_a_success(capabilities, store):
    generator = FixedGenerator(_candidates("a", "b"))
    request = _request()

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"a": 30, "b": 60})):
        result = await _pipeline(capabilities, generator).run(request)

    assert result.status == ResultStatus.SUCCESS
    assert result.best_candidate.candidate.id == "b"
    assert result.best_candidate.best is True
    assert result.confidence == 60
    assert generator.calls == [False]
    assert request.status == RequestStatus.DONE
    assert [p.candidate.id for p in store.candidates[request.id]] == ["b", "a"]


@pytest.mark.asyncio
async def test_score_of_fifty_nine_is_low_confidence(capabilities, store):
    generator = FixedGenerator(_candidates("a"))
    request = _request()

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"a": 59})):
        result = await _pipeline(capabilities, generator).run(request)

    assert result.status == ResultStatus.LOW_CONFIDENCE
    assert generator.calls == [False, True]
    assert result.best_candidate.best is False
    assert result.fallback_suggestions is None
    assert request.status == RequestStatus.DONE


@pytest.mark.asyncio
async def test_expanded_retry_that_improves_turns_into_success(capabilities):
    generator = FixedGenerator(_candidates("first"), expanded=_candidates("wide-1", "wide-2"))
    totals = {"first": 45, "wide-1": 50, "wide-2": 65}

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer(totals)):
        result = await _pipeline(capabilities, generator).run(_request())

    assert result.status == ResultStatus.SUCCESS
    assert result.best_candidate.candidate.id == "wide-2"
    assert result.fallback_suggestions.expand_radius is True


@pytest.mark.asyncio
async def test_retry_after_low_confidence_is_accepted_at_the_relaxed_threshold(capabilities):
    generator = FixedGenerator(_candidates("first"), expanded=_candidates("wide"))

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"first": 45, "wide": 50})):
        result = await _pipeline(capabilities, generator).run(_request())

    assert result.status == ResultStatus.SUCCESS
    assert result.best_candidate.best is True
    assert result.fallback_suggestions.expand_radius is True


@pytest.mark.asyncio
async def test_retry_that_does_not_improve_keeps_the_original_result(capabilities):
    generator = FixedGenerator(_candidates("first"), expanded=_candidates("wide"))

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"first": 45, "wide": 42})):
        result = await _pipeline(capabilities, generator).run(_request())

    assert result.status == ResultStatus.LOW_CONFIDENCE
    assert result.best_candidate.candidate.id == "first"
    assert result.fallback_suggestions is None


@pytest.mark.asyncio
async def test_below_forty_after_retry_fails_but_returns_best_candidate(capabilities, store):
    first = _candidates("first")
    first[0].sales = SalesStats(count=2, density_per_km2=2.5)
    generator = FixedGenerator(first, expanded=_candidates("wide"))
    request = _request()

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"first": 20, "wide": 25})):
        result = await _pipeline(capabilities, generator).run(request)

    assert result.status == ResultStatus.FAILED
    assert result.reason == "BelowThreshold"
    assert result.best_candidate.candidate.id == "wide"
    assert result.best_candidate.best is False
    assert result.confidence == 25
    assert request.status == RequestStatus.FAILED
    assert len(store.candidates[request.id]) == 1
    assert "No convincing location found" in result.explanation


@pytest.mark.asyncio
async def test_low_confidence_reports_local_sales_density(capabilities):
    candidates = _candidates("a")
    candidates[0].sales = SalesStats(count=8, density_per_km2=10.2)
    generator = FixedGenerator(candidates)

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"a": 50})):
        result = await _pipeline(capabilities, generator).run(_request())

    assert result.status == ResultStatus.LOW_CONFIDENCE
    assert result.fallback_suggestions.dvf_density == pytest.approx(10.2)
    assert result.fallback_suggestions.expand_radius is None


@pytest.mark.asyncio
async def test_persisted_candidates_are_sorted_with_a_single_best(capabilities, store):
    ids = [f"c{i}" for i in range(20)]
    totals = {cid: (i * 37) % 100 for i, cid in enumerate(ids)}
    request = _request()

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer(totals)):
        await _pipeline(capabilities, FixedGenerator(_candidates(*ids))).run(request)

    persisted = store.candidates[request.id]
    assert len(persisted) == 15
    assert [p.total for p in persisted] == sorted((p.total for p in persisted), reverse=True)
    assert sum(p.best for p in persisted) == 1
    assert persisted[0].best


@pytest.mark.asyncio
async def test_identical_requests_yield_the_same_ranking(capabilities):
    totals = {"a": 70, "b": 70, "c": 40, "d": 90, "e": 70}

    orders = []
    for _ in range(2):
        generator = FixedGenerator(_candidates("a", "b", "c", "d", "e"))
        with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer(totals)):
            result = await _pipeline(capabilities, generator).run(_request())
        orders.append([p.candidate.id for p in result.candidates])

    assert orders[0] == orders[1] == ["d", "a", "b", "e", "c"]


@pytest.mark.asyncio
async def test_sales_timeout_only_neutralizes_that_candidate_density(capabilities):
    candidates = _candidates("c0", "c1", "c2", "c3", "c4")
    slow = candidates[2]
    capabilities.sales = FakeSales(SalesStats(count=5, density_per_km2=4.0), timeouts=[(slow.lat, slow.lng)])

    result = await _pipeline(capabilities, FixedGenerator(candidates)).run(_request())

    densities = {p.candidate.id: p.breakdown.density for p in result.candidates}
    assert len(densities) == 5
    assert densities["c2"] == 50
    assert all(densities[cid] == 70 for cid in ("c0", "c1", "c3", "c4"))


@pytest.mark.asyncio
async def test_scoring_runs_in_batches_of_five(capabilities):
    active, peak = 0, 0

    async def counting_scorer(evaluation, ctx):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        for name in SCORE_WEIGHTS:
            evaluation.subscores[name] = SubScore(80, [])
        return evaluation

    ids = [f"c{i}" for i in range(12)]
    with patch("parcel_locator.pipeline.score_candidate", new=counting_scorer):
        result = await _pipeline(capabilities, FixedGenerator(_candidates(*ids))).run(_request())

    assert peak == 5
    assert len(result.candidates) == 12


@pytest.mark.asyncio
async def test_deadline_keeps_partial_subscores(capabilities):
    async def slow_scorer(evaluation, ctx):
        evaluation.subscores["image"] = SubScore(100, ["image done"])
        await asyncio.sleep(10)
        return evaluation

    start = time.perf_counter()
    with patch("parcel_locator.pipeline.score_candidate", new=slow_scorer):
        result = await _pipeline(capabilities, FixedGenerator(_candidates("a", "b")), deadline_seconds=0.2).run(
            _request()
        )

    assert time.perf_counter() - start < 5
    best = result.best_candidate
    assert best.breakdown.image == 100
    assert best.breakdown.pool == 50
    assert best.total == pytest.approx(62.5)
    assert "pool not scored before the deadline" in best.reasons
    assert result.status == ResultStatus.SUCCESS


@pytest.mark.asyncio
async def test_persistence_failure_surfaces_as_pipeline_failure(capabilities, store):
    store.save_candidates = AsyncMock(side_effect=ConnectionError("database unreachable"))
    request = _request()

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"a": 80})):
        with pytest.raises(PipelineFailure):
            await _pipeline(capabilities, FixedGenerator(_candidates("a"))).run(request)

    assert request.status == RequestStatus.FAILED
    assert store.status_of(request.id) == RequestStatus.FAILED


@pytest.mark.asyncio
async def test_parcel_scan_without_photos_uses_address_mode(capabilities):
    address = FixedGenerator(_candidates("addr"))
    scan = FixedGenerator(_candidates("scan"))
    pipeline = LocalizationPipeline(
        capabilities, generators={SearchMode.ADDRESS: address, SearchMode.PARCEL_SCAN: scan}
    )

    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"addr": 70, "scan": 70})):
        result = await pipeline.run(_request(mode=SearchMode.PARCEL_SCAN))

    assert result.best_candidate.candidate.id == "addr"
    assert scan.calls == []


@pytest.mark.asyncio
async def test_explanation_comes_from_language_model_with_fallback(capabilities):
    with patch("parcel_locator.pipeline.score_candidate", new=fixed_scorer({"a": 72})):
        plain = await _pipeline(capabilities, FixedGenerator(_candidates("a"))).run(_request())
        capabilities.language = FakeLanguage(explanation="Pool and roof match the photos.")
        explained = await _pipeline(capabilities, FixedGenerator(_candidates("a"))).run(_request())

    assert plain.explanation == "Probable at 72%: a street."
    assert explained.explanation == "Pool and roof match the photos."


@pytest.mark.asyncio
async def test_finished_request_cannot_run_again(capabilities):
    request = _request()
    request.status = RequestStatus.DONE
    with pytest.raises(ValueError):
        await _pipeline(capabilities, FixedGenerator([])).run(request)


class HtmlErrorPageHttp:
    """HTTP double whose gateway answers an HTML error page, with status 200, for the listed latitudes."""

    def __init__(self, broken_lats=(), payload=None):
        self.broken_lats = set(broken_lats)
        self.payload = payload
        self.calls = 0

    async def get_json(self, url, params=None, headers=None):
        self.calls += 1
        lat = (params or {}).get("lat")
        if lat in self.broken_lats or self.payload is None:
            return json.loads("<html>502 Bad Gateway</html>")
        return self.payload


@pytest.mark.asyncio
async def test_malformed_sales_payload_only_neutralizes_that_candidate(capabilities):
    candidates = _candidates("c0", "c1", "c2", "c3", "c4")
    one_sale = {"resultats": [{"valeur_fonciere": "180000", "date_mutation": "2022-05-02"}]}
    capabilities.sales = DvfSalesDensity(HtmlErrorPageHttp(broken_lats=[candidates[1].lat], payload=one_sale))

    result = await _pipeline(capabilities, FixedGenerator(candidates)).run(_request())

    densities = {p.candidate.id: p.breakdown.density for p in result.candidates}
    assert len(densities) == 5
    assert densities["c1"] == 50
    expected = 50 + 5 * (1 / (math.pi * 0.25))
    assert all(densities[cid] == pytest.approx(expected) for cid in ("c0", "c2", "c3", "c4"))


@pytest.mark.asyncio
async def test_unreadable_geocoder_answers_end_in_no_candidates(capabilities, store):
    capabilities.geocoder = GoogleGeocoder(HtmlErrorPageHttp(), api_key="test-key")
    request = _request(
        hints=UserHints(city="Paris"), image_refs=["https://img/1.jpg"], mode=SearchMode.PARCEL_SCAN
    )

    result = await LocalizationPipeline(capabilities).run(request)

    assert result.status == ResultStatus.FAILED
    assert result.reason == "NoCandidatesFound"
    assert request.status == RequestStatus.FAILED
    assert store.status_of(request.id) == RequestStatus.FAILED


class BrokenGenerator:
    async def generate(self, descriptor, request, expanded=False):
        raise KeyError("cell_row")


@pytest.mark.asyncio
async def test_unexpected_fault_marks_request_failed(capabilities, store):
    request = _request()

    with pytest.raises(PipelineFailure):
        await _pipeline(capabilities, BrokenGenerator()).run(request)

    assert request.status == RequestStatus.FAILED
    assert store.status_history[request.id] == [RequestStatus.RUNNING, RequestStatus.FAILED]


@pytest.mark.asyncio
async def test_status_store_failure_after_no_candidates_still_fails_the_request(capabilities, store):
    record_status = store.update_request_status

    async def refuse_failed(request_id, status):
        if status == RequestStatus.FAILED:
            raise ConnectionError("database unreachable")
        await record_status(request_id, status)

    store.update_request_status = refuse_failed
    request = _request()

    with pytest.raises(PipelineFailure):
        await _pipeline(capabilities, FixedGenerator([])).run(request)

    assert request.status == RequestStatus.FAILED


@pytest.mark.asyncio
async def test_more_candidates_skips_locations_already_shown(capabilities, store):
    capabilities.geocoder = FakeGeocoder(
        default=[hit(44.1, 1.1, address="A"), hit(44.2, 1.2, address="B"), hit(44.3, 1.3, address="C")]
    )
    pipeline = LocalizationPipeline(capabilities, persist_top_n=2)
    request = _request(hints=UserHints(city="Cahors"))
    flat = fixed_scorer({"geocode-0": 70, "geocode-1": 70, "geocode-2": 70})

    with patch("parcel_locator.pipeline.score_candidate", new=flat):
        first = await pipeline.run(request)
        more = await pipeline.more_candidates(request)

    assert [p.candidate.address for p in first.candidates] == ["A", "B"]
    assert [p.candidate.address for p in more.candidates] == ["C"]
    assert more.request_id != request.id
    assert [p.candidate.address for p in store.candidates[request.id]] == ["A", "B"]


@pytest.mark.asyncio
async def test_more_candidates_requires_a_finished_request(capabilities):
    with pytest.raises(ValueError):
        await _pipeline(capabilities, FixedGenerator([])).more_candidates(_request())


@pytest.mark.asyncio
async def test_closers_are_closed_with_the_pipeline(capabilities):
    client = AsyncMock()
    await LocalizationPipeline(capabilities, closers=[client]).close()
    client.close.assert_awaited_once()
