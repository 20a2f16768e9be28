import pytest

from parcel_locator.config import SCORE_WEIGHTS
from parcel_locator.enricher import Enricher
from parcel_locator.geometry import square_around
from parcel_locator.models import Candidate, Landmark, NumericRange, Point, PoolState, ScoreBreakdown, SubScore, UserHints
from parcel_locator.schemas import (
    ImageAttributes,
    ImageJudgement,
    LastSale,
    PoolAttributes,
    RoofAttributes,
    SalesStats,
    TerrainAttributes,
)
from parcel_locator.scorers import (
    CandidateEvaluation,
    ScoringContext,
    density_score,
    finalize,
    hints_score,
    image_score,
    pool_score,
    roof_score,
    score_candidate,
    terrain_score,
)
from tests.fakes import FakeSales, FakeVision


def _candidate(**kwargs) -> Candidate:
    kwargs.setdefault("image_ref", "img://candidate")
    return Candidate(lat=44.0, lng=1.0, id="c", **kwargs)


def _pool(present, confidence=0.9, shape=None) -> ImageAttributes:
    return ImageAttributes(pool=PoolAttributes(present=present, confidence=confidence, shape=shape))


# =========================
# Image
# =========================


@pytest.mark.asyncio
async def test_image_score_is_neutral_without_photos():
    vision = FakeVision(ImageJudgement(similarity=0.9))
    result = await image_score(_candidate(), [], vision)
    assert result.score == 50
    assert vision.calls == []


@pytest.mark.asyncio
async def test_image_score_scales_similarity():
    result = await image_score(_candidate(), ["photo"], FakeVision(ImageJudgement(similarity=0.8)))
    assert result.score == pytest.approx(80)
    assert "high visual similarity" in result.reasons[0]


@pytest.mark.asyncio
async def test_image_score_falls_back_to_neutral_on_failure():
    result = await image_score(_candidate(), ["photo"], FakeVision(fail=True))
    assert result.score == 50
    assert result.reasons == ["image comparison unavailable"]


# =========================
# Pool
# =========================


@pytest.mark.asyncio
async def test_pool_seen_on_imagery_when_hints_say_none_is_penalized():
    vision = FakeVision(ImageJudgement(candidate=_pool(True, 0.9)))
    result = await pool_score(_candidate(), [], UserHints(pool=PoolState.NONE), vision)
    assert result.score < 50
    assert result.score == 20
    assert result.pool_in_imagery is True


@pytest.mark.asyncio
async def test_declared_pool_confirmed_on_both_sides_with_shape():
    vision = FakeVision(
        ImageJudgement(reference=_pool(True, shape="rectangulaire"), candidate=_pool(True, shape="rectangle"))
    )
    result = await pool_score(_candidate(), ["photo"], UserHints(pool=PoolState.RECTANGULAR), vision)
    assert result.score == 90
    assert result.pool_in_photo is True


@pytest.mark.asyncio
async def test_declared_pool_missing_everywhere_is_penalized():
    vision = FakeVision(ImageJudgement(reference=_pool(False), candidate=_pool(False)))
    result = await pool_score(_candidate(), ["photo"], UserHints(pool=PoolState.ROUND), vision)
    assert result.score == 20


@pytest.mark.asyncio
async def test_low_confidence_pool_counts_as_absent():
    vision = FakeVision(ImageJudgement(candidate=_pool(True, 0.3)))
    result = await pool_score(_candidate(), [], UserHints(pool=PoolState.NONE), vision)
    assert result.score == 60


@pytest.mark.asyncio
async def test_pool_without_hint_or_photo_skips_vision():
    vision = FakeVision()
    result = await pool_score(_candidate(), [], UserHints(), vision)
    assert result.score == 50
    assert vision.calls == []


# =========================
# Roof and terrain
# =========================


@pytest.mark.asyncio
async def test_roof_agreement_on_color_and_shape():
    roof = ImageAttributes(roof=RoofAttributes(color="red", shape="gable"))
    result = await roof_score(_candidate(), ["photo"], FakeVision(ImageJudgement(reference=roof, candidate=roof)))
    assert result.score == 85


@pytest.mark.asyncio
async def test_roof_color_disagreement():
    judgement = ImageJudgement(
        reference=ImageAttributes(roof=RoofAttributes(color="red")),
        candidate=ImageAttributes(roof=RoofAttributes(color="grey")),
    )
    result = await roof_score(_candidate(), ["photo"], FakeVision(judgement))
    assert result.score == 40


@pytest.mark.asyncio
async def test_terrain_surface_hint_uses_polygon_area():
    polygon = square_around(Point(44.0, 1.0), 200 / 111_000)  # ~40 000 m2
    candidate = _candidate(polygon=polygon)

    inside = await terrain_score(candidate, [], UserHints(terrain_surface_range=NumericRange(30_000, 50_000)), FakeVision())
    outside = await terrain_score(candidate, [], UserHints(terrain_surface_range=NumericRange(1_000, 2_000)), FakeVision())

    assert inside.score == 65
    assert outside.score == 40


@pytest.mark.asyncio
async def test_terrain_visual_agreement():
    terrain = ImageAttributes(terrain=TerrainAttributes(shape="rectangular", has_terrace=True))
    result = await terrain_score(
        _candidate(), ["photo"], UserHints(), FakeVision(ImageJudgement(reference=terrain, candidate=terrain))
    )
    assert result.score == 75


# =========================
# Hints and density
# =========================


def test_hints_score_is_neutral_without_hints():
    assert hints_score(_candidate(), UserHints()).score == 50


def test_hints_score_rewards_prices_consistent_with_local_sales():
    candidate = _candidate()
    candidate.sales = SalesStats(count=10, avg_price=300_000, last_sale=LastSale(surface=120))
    hints = UserHints(price_range=NumericRange(280_000, 320_000), surface_range=NumericRange(100, 130))

    result = hints_score(candidate, hints)

    # consistency 0.5 + 0.3 + 0.2 = 1.0 -> +20
    assert result.score == pytest.approx(70)
    assert "price and surface consistent with local sales" in result.reasons


def test_hints_score_without_sales_data_stays_neutral():
    result = hints_score(_candidate(), UserHints(price_range=NumericRange(280_000, 320_000)))
    assert result.score == 50
    assert result.reasons == ["no sales data available"]


def test_hints_score_typology_and_landmark():
    candidate = _candidate()
    hints = UserHints(property_type="house", landmark=Landmark(name="Ecole Jules Ferry", walking_minutes=5))
    # landmark 400 m north: ~4.8 min walk
    landmark = Point(44.0 + 400 / 111_195, 1.0)

    result = hints_score(candidate, hints, landmark)

    assert result.score == pytest.approx(50 + 0.3 * 20 + 10)


def test_density_score():
    candidate = _candidate()
    assert density_score(candidate).score == 50

    candidate.sales = SalesStats(count=5, density_per_km2=4.0)
    assert density_score(candidate).score == 70

    candidate.sales = SalesStats(count=300, density_per_km2=380.0)
    assert density_score(candidate).score == 100


# =========================
# Aggregation
# =========================


def _breakdown(**overrides) -> ScoreBreakdown:
    values = {name: 50.0 for name in SCORE_WEIGHTS}
    values.update(overrides)
    return ScoreBreakdown.from_subscores({k: SubScore(v, [f"{k} reason"]) for k, v in values.items()})


def test_total_is_the_weighted_sum():
    b = _breakdown(image=80, pool=20, roof=85, terrain=65, hints=70, density=100)
    expected = 0.25 * 80 + 0.15 * 20 + 0.15 * 85 + 0.15 * 65 + 0.20 * 70 + 0.10 * 100
    assert b.total == pytest.approx(expected, abs=0.01)
    assert 0 <= b.total <= 100
    assert b.reasons == [f"{k} reason" for k in SCORE_WEIGHTS]


def test_subscores_are_clamped():
    b = _breakdown(image=150, pool=-20)
    assert b.image == 100
    assert b.pool == 0


def test_raising_the_image_score_never_lowers_the_total():
    totals = [_breakdown(image=v).total for v in range(0, 101, 10)]
    assert totals == sorted(totals)


@pytest.mark.asyncio
async def test_score_candidate_combines_all_subscores():
    candidate = _candidate()
    ctx = ScoringContext(
        hints=UserHints(),
        photos=["photo"],
        comparator=FakeVision(ImageJudgement(similarity=0.6)),
        enricher=Enricher(FakeSales(SalesStats(count=5, density_per_km2=4.0))),
    )

    evaluation = await score_candidate(CandidateEvaluation(candidate), ctx)
    matched = finalize(evaluation)

    assert set(evaluation.subscores) == set(SCORE_WEIGHTS)
    assert matched.breakdown.image == pytest.approx(60)
    assert matched.breakdown.density == 70
    assert matched.best is False


def test_finalize_fills_missing_subscores_with_neutral():
    evaluation = CandidateEvaluation(_candidate(), subscores={"image": SubScore(90, [])})
    matched = finalize(evaluation)
    assert matched.breakdown.pool == 50
    assert matched.total == pytest.approx(0.25 * 90 + 0.75 * 50)
    assert "pool not scored before the deadline" in matched.reasons
