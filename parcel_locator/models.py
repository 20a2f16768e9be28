"""
Typed data models for the parcel localization pipeline.
All domain records used throughout the codebase are defined here; payloads
coming back from external capabilities live in schemas.py.
"""
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from parcel_locator.config import METERS_PER_DEGREE, SCORE_WEIGHTS
from parcel_locator.schemas import CadastralParcel, SalesStats


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    LOW_CONFIDENCE = "low-confidence"
    FAILED = "failed"


class SearchMode(str, Enum):
    ADDRESS = "address"
    PARCEL_SCAN = "parcel-scan"


class PoolState(str, Enum):
    NONE = "none"
    RECTANGULAR = "rectangular"
    ROUND = "round"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Point:
    lat: float
    lng: float


@dataclass(frozen=True)
class NumericRange:
    """Closed numeric interval; either bound may be missing."""
    min: Optional[float] = None
    max: Optional[float] = None

    @property
    def is_bounded(self) -> bool:
        return self.min is not None and self.max is not None

    def contains(self, value: float, tolerance: float = 0.0) -> bool:
        """True when value lies in [min*(1-tolerance), max*(1+tolerance)]."""
        if self.min is not None and value < self.min * (1 - tolerance):
            return False
        if self.max is not None and value > self.max * (1 + tolerance):
            return False
        return True

    def relative_deviation(self, value: float) -> float:
        """Smallest relative distance between value and either bound."""
        deviations = [
            abs(value - bound) / bound
            for bound in (self.min, self.max)
            if bound
        ]
        return min(deviations) if deviations else 0.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["NumericRange"]:
        if not data:
            return None
        low, high = data.get("min"), data.get("max")
        if low is None and high is None:
            return None
        return cls(
            min=float(low) if low is not None else None,
            max=float(high) if high is not None else None,
        )


@dataclass(frozen=True)
class Landmark:
    """Named point of interest the user says is within walking distance."""
    name: str
    kind: Optional[str] = None  # school, town hall, supermarket...
    walking_minutes: float = 5.0


@dataclass(frozen=True)
class UserHints:
    """Structured constraints typed in by the user. Immutable once a request exists."""
    city: Optional[str] = None
    postal_code: Optional[str] = None
    property_type: Optional[str] = None
    construction_period: Optional[str] = None
    price_range: Optional[NumericRange] = None
    surface_range: Optional[NumericRange] = None
    terrain_surface_range: Optional[NumericRange] = None
    pool: PoolState = PoolState.UNKNOWN
    neighborhood_type: Optional[str] = None
    semi_detached: Optional[bool] = None
    landmark: Optional[Landmark] = None

    @property
    def declares_pool(self) -> bool:
        return self.pool in (PoolState.RECTANGULAR, PoolState.ROUND)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UserHints":
        """Build hints from a loosely-typed mapping (CLI / JSON input)."""
        data = data or {}
        landmark = None
        raw_landmark = data.get("landmark")
        if raw_landmark and raw_landmark.get("name"):
            landmark = Landmark(
                name=raw_landmark["name"],
                kind=raw_landmark.get("kind"),
                walking_minutes=float(raw_landmark.get("walking_minutes") or 5),
            )
        try:
            pool = PoolState(data.get("pool") or PoolState.UNKNOWN.value)
        except ValueError:
            pool = PoolState.UNKNOWN
        semi_detached = data.get("semi_detached")
        return cls(
            city=data.get("city"),
            postal_code=data.get("postal_code"),
            property_type=data.get("property_type"),
            construction_period=data.get("construction_period"),
            price_range=NumericRange.from_dict(data.get("price_range")),
            surface_range=NumericRange.from_dict(data.get("surface_range")),
            terrain_surface_range=NumericRange.from_dict(data.get("terrain_surface_range")),
            pool=pool,
            neighborhood_type=data.get("neighborhood_type"),
            semi_detached=bool(semi_detached) if semi_detached is not None else None,
            landmark=landmark,
        )


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    @property
    def center(self) -> Point:
        return Point((self.min_lat + self.max_lat) / 2, (self.min_lng + self.max_lng) / 2)

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    def expanded(self, factor: float) -> "BoundingBox":
        """Same center, half-widths multiplied by factor."""
        center = self.center
        half_lat = (self.max_lat - self.min_lat) / 2 * factor
        half_lng = (self.max_lng - self.min_lng) / 2 * factor
        return BoundingBox(center.lat - half_lat, center.lng - half_lng, center.lat + half_lat, center.lng + half_lng)

    @classmethod
    def around(cls, lat: float, lng: float, half_width_meters: float) -> "BoundingBox":
        half = half_width_meters / METERS_PER_DEGREE
        return cls(lat - half, lng - half, lat + half, lng + half)


@dataclass(frozen=True)
class SearchZone:
    """User-selected search area: a radius around a point, or strict bounds when radius is 0."""
    lat: float
    lng: float
    radius_km: float = 0.0
    bounds: Optional[BoundingBox] = None
    label: Optional[str] = None

    @property
    def is_strict_bounds(self) -> bool:
        return self.radius_km == 0 and self.bounds is not None

    def widened(self, factor: float) -> "SearchZone":
        if self.is_strict_bounds:
            return SearchZone(self.lat, self.lng, 0.0, self.bounds.expanded(factor), self.label)
        return SearchZone(self.lat, self.lng, self.radius_km * factor, self.bounds, self.label)


@dataclass
class LocalizationInput:
    """Raw, already-extracted evidence submitted by the caller."""
    text: Optional[str] = None
    url: Optional[str] = None
    image_refs: List[str] = field(default_factory=list)
    hints: UserHints = field(default_factory=UserHints)
    mode: SearchMode = SearchMode.ADDRESS
    zone: Optional[SearchZone] = None
    # Fingerprints of locations already shown for this property; see location_fingerprints
    excluded: Set[str] = field(default_factory=set)


@dataclass
class LocalizationRequest:
    """A submitted request. Only the pipeline orchestrator mutates `status`."""
    input: LocalizationInput
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status in (RequestStatus.DONE, RequestStatus.FAILED)


@dataclass
class QueryDescriptor:
    """Canonical query distilled from text and hints. Every field is optional."""
    city: Optional[str] = None
    postal_code: Optional[str] = None
    property_type: Optional[str] = None
    surface_range: Optional[NumericRange] = None
    price_range: Optional[NumericRange] = None

    @property
    def is_empty(self) -> bool:
        return not any([self.city, self.postal_code, self.property_type, self.surface_range, self.price_range])

    @property
    def is_complete(self) -> bool:
        return all([self.city or self.postal_code, self.property_type, self.surface_range, self.price_range])

    def location_query(self) -> str:
        return " ".join(part for part in (self.city, self.postal_code, "France") if part)


def location_fingerprints(lat: float, lng: float, parcel_id: Optional[str] = None) -> Set[str]:
    """
    Keys identifying a location already proposed to the user: its coordinates
    rounded to 1e-4 degree (about 11 m) and, when known, its cadastral parcel id.
    """
    keys = {f"{lat:.4f},{lng:.4f}"}
    if parcel_id:
        keys.add(f"parcel:{parcel_id}")
    return keys


@dataclass
class Candidate:
    """A provisional location produced by address geocoding."""
    lat: float
    lng: float
    id: str = ""
    polygon: List[Point] = field(default_factory=list)
    building_footprint: List[Point] = field(default_factory=list)
    image_ref: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    section: Optional[str] = None
    number: Optional[str] = None
    source: str = "geocode"
    geocode_score: Optional[float] = None
    place_types: List[str] = field(default_factory=list)
    # Enricher output
    cadastral: Optional[CadastralParcel] = None
    sales: Optional[SalesStats] = None
    enrichment_notes: List[str] = field(default_factory=list)

    @property
    def point(self) -> Point:
        return Point(self.lat, self.lng)

    @property
    def fingerprints(self) -> Set[str]:
        return location_fingerprints(self.lat, self.lng, self.cadastral.parcel_id if self.cadastral else None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lat": self.lat,
            "lng": self.lng,
            "address": self.address,
            "postal_code": self.postal_code,
            "city": self.city,
            "section": self.section,
            "number": self.number,
            "source": self.source,
            "image_ref": self.image_ref,
        }


@dataclass
class ParcelCandidate(Candidate):
    """A parcel enumerated in parcel-scan mode."""
    source: str = "parcel-scan"
    cell_row: Optional[int] = None
    cell_col: Optional[int] = None


@dataclass
class SubScore:
    score: float
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-criterion sub-scores in [0,100] and their weighted total."""
    image: float
    pool: float
    roof: float
    terrain: float
    hints: float
    density: float
    total: float
    reasons: List[str] = field(default_factory=list)

    @classmethod
    def from_subscores(cls, subscores: Dict[str, SubScore]) -> "ScoreBreakdown":
        values = {name: _clamp(subscores[name].score) for name in SCORE_WEIGHTS}
        total = sum(SCORE_WEIGHTS[name] * values[name] for name in SCORE_WEIGHTS)
        reasons: List[str] = []
        for name in SCORE_WEIGHTS:
            reasons.extend(r for r in subscores[name].reasons if r)
        return cls(total=round(_clamp(total), 2), reasons=reasons, **values)

    def as_dict(self) -> Dict[str, float]:
        return {
            "image": self.image,
            "pool": self.pool,
            "roof": self.roof,
            "terrain": self.terrain,
            "hints": self.hints,
            "density": self.density,
        }


@dataclass
class MatchedParcel:
    """A candidate joined with its score breakdown; what gets returned and persisted."""
    candidate: Candidate
    breakdown: ScoreBreakdown
    best: bool = False
    pool_in_photo: Optional[bool] = None
    pool_in_imagery: Optional[bool] = None

    @property
    def total(self) -> float:
        return self.breakdown.total

    @property
    def reasons(self) -> List[str]:
        return self.breakdown.reasons

    def to_dict(self) -> Dict[str, Any]:
        data = self.candidate.to_dict()
        data.update(
            total=self.total,
            best=self.best,
            breakdown=self.breakdown.as_dict(),
            reasons=list(self.reasons),
        )
        return data


@dataclass
class FallbackSuggestions:
    expand_radius: Optional[bool] = None
    dvf_density: Optional[float] = None


@dataclass
class LocalizationResult:
    """Final outcome handed back to the caller."""
    request_id: str
    status: ResultStatus
    best_candidate: Optional[MatchedParcel]
    candidates: List[MatchedParcel]
    explanation: str
    confidence: float = 0.0
    reason: Optional[str] = None
    fallback_suggestions: Optional[FallbackSuggestions] = None


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    if math.isnan(value):
        return low
    return max(low, min(high, value))
