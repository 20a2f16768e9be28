"""
Parcel catalog and cadastral lookup adapters.
"""
import asyncio
from typing import Any, Dict, List, Optional

from aiohttp import ClientError
from loguru import logger
from pydantic import ValidationError

from parcel_locator.capabilities.imagery import satellite_image_ref
from parcel_locator.clients import HttpClient
from parcel_locator.config import CADASTRE_URL, GRID_CELL_METERS, GRID_MAX_CELLS
from parcel_locator.errors import EnrichmentPartialFailure
from parcel_locator.geometry import grid_plan, square_around
from parcel_locator.models import BoundingBox
from parcel_locator.schemas import CadastralParcel, ParcelRecord


class GridParcelCatalog:
    """
    Parcel catalog that enumerates synthetic parcels on a regular grid.

    Each grid cell becomes one parcel: the cell square as polygon, a
    half-cell building footprint and an aerial image of its center.
    """

    def __init__(
        self,
        cell_size_meters: float = GRID_CELL_METERS,
        max_cells: int = GRID_MAX_CELLS,
        image_ref=satellite_image_ref,
    ):
        self.cell_size_meters = cell_size_meters
        self.max_cells = max_cells
        self.image_ref = image_ref

    async def parcels_in_bbox(self, bbox: BoundingBox) -> List[ParcelRecord]:
        cells = grid_plan(bbox, self.cell_size_meters, self.max_cells)
        records = []
        for cell in cells:
            footprint = square_around(cell.center, cell.size_degrees / 2)
            records.append(
                ParcelRecord(
                    id=f"parcel-{cell.row}-{cell.col}",
                    centroid=(cell.center.lat, cell.center.lng),
                    polygon=[(p.lat, p.lng) for p in cell.polygon],
                    footprint=[(p.lat, p.lng) for p in footprint],
                    image_ref=self.image_ref(cell.center.lat, cell.center.lng),
                    row=cell.row,
                    col=cell.col,
                )
            )
        logger.debug(f"🗺️ Grid catalog produced {len(records)} parcel(s)")
        return records


class IgnCadastre:
    """Cadastral lookup against the IGN apicarto cadastre API."""

    def __init__(self, http: HttpClient, url: str = CADASTRE_URL):
        self.http = http
        self.url = url

    async def parcel_at(self, lat: float, lng: float) -> Optional[CadastralParcel]:
        """
        Find the cadastral parcel containing a point.

        Returns:
            CadastralParcel or None when the point falls outside any parcel.
        """
        geom = f'{{"type":"Point","coordinates":[{lng},{lat}]}}'
        try:
            data = await self.http.get_json(self.url, params={"geom": geom})
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            raise EnrichmentPartialFailure("cadastre", str(e) or type(e).__name__) from e
        if data is not None and not isinstance(data, dict):
            raise EnrichmentPartialFailure("cadastre", f"unexpected payload type {type(data).__name__}")

        features: List[Dict[str, Any]] = (data or {}).get("features") or []
        if not features:
            return None
        props = features[0].get("properties") or {}
        try:
            return CadastralParcel(
                parcel_id=props.get("idu") or f"{props.get('section', '')}-{props.get('numero', '')}",
                section=props.get("section"),
                number=props.get("numero"),
                surface_m2=props.get("contenance"),
                commune_code=props.get("code_insee"),
            )
        except ValidationError as e:
            raise EnrichmentPartialFailure("cadastre", f"invalid parcel payload: {e}") from e
