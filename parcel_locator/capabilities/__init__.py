"""Capability interfaces and their production adapters."""
from parcel_locator.capabilities.base import (
    CadastralLookup,
    Capabilities,
    Geocoder,
    LanguageModel,
    ParcelCatalog,
    Persistence,
    SalesDensitySource,
    VisualComparator,
)
from parcel_locator.capabilities.geocoding import GoogleGeocoder
from parcel_locator.capabilities.language import OpenAILanguageModel
from parcel_locator.capabilities.parcels import GridParcelCatalog, IgnCadastre
from parcel_locator.capabilities.persistence import CsvStore, InMemoryStore
from parcel_locator.capabilities.sales import DvfSalesDensity
from parcel_locator.capabilities.vision import OpenAIVisualComparator

__all__ = [
    "CadastralLookup",
    "Capabilities",
    "CsvStore",
    "DvfSalesDensity",
    "Geocoder",
    "GoogleGeocoder",
    "GridParcelCatalog",
    "IgnCadastre",
    "InMemoryStore",
    "LanguageModel",
    "OpenAILanguageModel",
    "OpenAIVisualComparator",
    "ParcelCatalog",
    "Persistence",
    "SalesDensitySource",
    "VisualComparator",
]
