"""
Persistence adapters for requests and matched parcels.
"""
import csv
import os
from datetime import datetime, timezone
from typing import Dict, List, Sequence, Set

from loguru import logger

from parcel_locator.config import CANDIDATES_CSV, STATUS_CSV
from parcel_locator.models import MatchedParcel, RequestStatus, location_fingerprints

CANDIDATE_COLUMNS = [
    "request_id", "rank", "candidate_id", "lat", "lng", "address", "postal_code", "city",
    "total", "best", "image", "pool", "roof", "terrain", "hints", "density", "reasons", "parcel_id",
]


class InMemoryStore:
    """Keeps everything in dictionaries; used by tests and embedding callers."""

    def __init__(self):
        self.candidates: Dict[str, List[MatchedParcel]] = {}
        self.status_history: Dict[str, List[RequestStatus]] = {}

    async def save_candidates(self, request_id: str, parcels: Sequence[MatchedParcel]) -> None:
        self.candidates[request_id] = list(parcels)

    async def update_request_status(self, request_id: str, status: RequestStatus) -> None:
        self.status_history.setdefault(request_id, []).append(status)

    async def shown_fingerprints(self, request_id: str) -> Set[str]:
        keys: Set[str] = set()
        for parcel in self.candidates.get(request_id, []):
            keys |= parcel.candidate.fingerprints
        return keys

    def status_of(self, request_id: str):
        history = self.status_history.get(request_id)
        return history[-1] if history else None


class CsvStore:
    """Appends matched parcels and status transitions to two CSV files."""

    def __init__(self, candidates_path: str = CANDIDATES_CSV, status_path: str = STATUS_CSV):
        self.candidates_path = candidates_path
        self.status_path = status_path
        self._ensure_header(self.candidates_path, CANDIDATE_COLUMNS)
        self._ensure_header(self.status_path, ["request_id", "status", "at"])

    @staticmethod
    def _ensure_header(path: str, columns: List[str]):
        if os.path.exists(path) and os.path.getsize(path) > 0:
            return
        with open(path, "w", newline="") as f:
            csv.writer(f).writerow(columns)

    async def save_candidates(self, request_id: str, parcels: Sequence[MatchedParcel]) -> None:
        with open(self.candidates_path, "a", newline="") as f:
            writer = csv.writer(f)
            for rank, parcel in enumerate(parcels, start=1):
                c, b = parcel.candidate, parcel.breakdown
                writer.writerow([
                    request_id, rank, c.id, c.lat, c.lng, c.address or "", c.postal_code or "", c.city or "",
                    b.total, parcel.best, b.image, b.pool, b.roof, b.terrain, b.hints, b.density,
                    " | ".join(b.reasons), c.cadastral.parcel_id if c.cadastral else "",
                ])
        logger.debug(f"💾 Saved {len(parcels)} candidate(s) for request {request_id}")

    async def update_request_status(self, request_id: str, status: RequestStatus) -> None:
        with open(self.status_path, "a", newline="") as f:
            csv.writer(f).writerow([request_id, status.value, datetime.now(timezone.utc).isoformat()])

    async def shown_fingerprints(self, request_id: str) -> Set[str]:
        """Fingerprints of every candidate saved for `request_id`."""
        keys: Set[str] = set()
        if not os.path.exists(self.candidates_path):
            return keys
        with open(self.candidates_path, newline="") as f:
            for row in csv.DictReader(f):
                if row["request_id"] != request_id:
                    continue
                keys |= location_fingerprints(float(row["lat"]), float(row["lng"]), row.get("parcel_id") or None)
        return keys
