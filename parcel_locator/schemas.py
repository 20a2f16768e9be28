# parcel_locator/schemas.py
"""
Validated payloads returned by external capabilities.

Every adapter in `parcel_locator.capabilities` parses raw JSON into one of
these models exactly once. Scorers and generators only ever see these types,
never ad hoc dictionaries.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =========================
# Geocoding
# =========================


class GeocodeHit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lat: float
    lng: float
    address: str = ""
    score: float = Field(0.5, ge=0, le=1, description="Precision of the geocoded result.")
    postal_code: Optional[str] = None
    city: Optional[str] = None
    place_types: list[str] = Field(default_factory=list)


class ReverseGeocodeHit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str
    postal_code: Optional[str] = None
    city: Optional[str] = None


# =========================
# Parcels and cadastre
# =========================


class ParcelRecord(BaseModel):
    """One parcel inside a bounding box. Coordinates are (lat, lng) pairs."""

    model_config = ConfigDict(extra="ignore")

    id: str
    centroid: tuple[float, float]
    polygon: list[tuple[float, float]] = Field(default_factory=list)
    footprint: list[tuple[float, float]] = Field(default_factory=list)
    image_ref: Optional[str] = None
    row: Optional[int] = None
    col: Optional[int] = None


class CadastralParcel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    parcel_id: str
    section: Optional[str] = None
    number: Optional[str] = None
    surface_m2: Optional[float] = None
    commune_code: Optional[str] = None


# =========================
# Sales density
# =========================


class LastSale(BaseModel):
    date: Optional[str] = None
    price: Optional[float] = None
    surface: Optional[float] = None


class SalesStats(BaseModel):
    model_config = ConfigDict(extra="ignore")

    count: int = Field(0, ge=0)
    avg_price: Optional[float] = None
    avg_surface: Optional[float] = None
    density_per_km2: float = Field(0.0, ge=0)
    last_sale: Optional[LastSale] = None


# =========================
# Visual comparison
# =========================

_SHAPE_ALIASES = {
    "rectangulaire": "rectangular",
    "rectangle": "rectangular",
    "ronde": "round",
    "circular": "round",
    "oval": "round",
    "autre": "other",
}


class PoolAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    present: bool = False
    confidence: float = Field(0.0, ge=0, le=1)
    shape: Optional[str] = None

    @field_validator("shape")
    @classmethod
    def _normalize_shape(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        value = value.strip().lower()
        return _SHAPE_ALIASES.get(value, value)


class RoofAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    color: Optional[str] = None
    shape: Optional[str] = None


class TerrainAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    shape: Optional[str] = None
    has_terrace: Optional[bool] = None


class ImageAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pool: Optional[PoolAttributes] = None
    roof: Optional[RoofAttributes] = None
    terrain: Optional[TerrainAttributes] = None


class ImageJudgement(BaseModel):
    """Structured verdict for one (reference, candidate, instruction) comparison."""

    model_config = ConfigDict(extra="ignore")

    similarity: float = Field(0.5, ge=0, le=1)
    reference: Optional[ImageAttributes] = None
    candidate: Optional[ImageAttributes] = None
    rationale: Optional[str] = None

    @field_validator("similarity", mode="before")
    @classmethod
    def _percent_to_unit(cls, value):
        # Vision models sometimes answer on a 0-100 scale
        if isinstance(value, (int, float)) and 1 < value <= 100:
            return value / 100
        return value


# =========================
# Language model extraction
# =========================


class ExtractedListing(BaseModel):
    model_config = ConfigDict(extra="ignore")

    city: Optional[str] = None
    postal_code: Optional[str] = None
    property_type: Optional[str] = None
    surface_min: Optional[float] = None
    surface_max: Optional[float] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None

    @field_validator("postal_code", mode="before")
    @classmethod
    def _stringify_postal(cls, value):
        if value is None or value == "":
            return None
        return str(value).strip()


class ExtractedAddress(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str
    city: Optional[str] = None
    postal_code: Optional[str] = None
    confidence: float = Field(0.5, ge=0, le=1)


class AddressExtraction(BaseModel):
    addresses: list[ExtractedAddress] = Field(default_factory=list)
