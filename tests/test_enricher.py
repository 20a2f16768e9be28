import pytest

from parcel_locator.enricher import Enricher
from parcel_locator.models import Candidate
from parcel_locator.schemas import CadastralParcel, SalesStats
from tests.fakes import FakeCadastre, FakeSales


@pytest.mark.asyncio
async def test_enrich_attaches_cadastre_and_sales():
    parcel = CadastralParcel(parcel_id="33063000AB0042", section="AB", number="0042", surface_m2=850)
    stats = SalesStats(count=12, avg_price=320_000, density_per_km2=15.3)
    candidate = Candidate(lat=44.84, lng=-0.58, id="c1")

    await Enricher(FakeSales(stats), FakeCadastre(parcel)).enrich(candidate)

    assert candidate.cadastral == parcel
    assert (candidate.section, candidate.number) == ("AB", "0042")
    assert candidate.sales == stats
    assert candidate.enrichment_notes == []


@pytest.mark.asyncio
async def test_known_section_skips_cadastre_lookup():
    candidate = Candidate(lat=44.84, lng=-0.58, section="ZC", number="12")
    await Enricher(FakeSales(), FakeCadastre(CadastralParcel(parcel_id="x", section="AB"))).enrich(candidate)
    assert candidate.cadastral is None
    assert candidate.section == "ZC"


@pytest.mark.asyncio
async def test_sales_timeout_degrades_to_missing_data():
    candidate = Candidate(lat=44.84, lng=-0.58, id="slow")
    sales = FakeSales(SalesStats(count=3), timeouts=[(44.84, -0.58)])

    await Enricher(sales, None).enrich(candidate)

    assert candidate.sales is None
    assert "no sales data available" in candidate.enrichment_notes


@pytest.mark.asyncio
async def test_empty_answers_are_recorded_as_notes():
    candidate = Candidate(lat=44.84, lng=-0.58)
    await Enricher(FakeSales(None), FakeCadastre(None)).enrich(candidate)
    assert candidate.enrichment_notes == ["no cadastral parcel at this point", "no sales data available"]
