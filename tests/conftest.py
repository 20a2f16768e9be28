import pytest

from parcel_locator.capabilities import Capabilities, InMemoryStore
from tests.fakes import PARIS, FakeCadastre, FakeCatalog, FakeGeocoder, FakeSales, FakeVision, hit


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def capabilities(store):
    return Capabilities(
        geocoder=FakeGeocoder(default=[hit(*PARIS, address="Paris")]),
        parcels=FakeCatalog([]),
        sales=FakeSales(),
        vision=FakeVision(),
        persistence=store,
        cadastre=FakeCadastre(),
        language=None,
    )
