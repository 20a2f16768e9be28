"""
Sales-density adapter over the DVF (property transaction) open data.
"""
import asyncio
import math
from typing import Any, Dict, List, Optional

import numpy as np
from aiohttp import ClientError
from loguru import logger
from pydantic import ValidationError

from parcel_locator.clients import HttpClient
from parcel_locator.config import DVF_URL
from parcel_locator.errors import EnrichmentPartialFailure
from parcel_locator.schemas import LastSale, SalesStats


def _as_float(value: Any) -> Optional[float]:
    """DVF values arrive as numbers or strings; anything unparsable counts as missing."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def summarize_sales(mutations: List[Dict[str, Any]], radius_meters: float) -> SalesStats:
    """
    Aggregate raw DVF mutations into count / price / surface statistics.

    Args:
        mutations: DVF rows (`valeur_fonciere`, `surface_reelle_bati`, `date_mutation`).
        radius_meters: Search radius, used to turn the count into a density.

    Returns:
        SalesStats: Aggregated statistics; density is sales per km2 of the search disc.
    """
    prices = np.array(
        [p for p in (_as_float(m.get("valeur_fonciere")) for m in mutations) if p is not None], dtype=float
    )
    surfaces = np.array(
        [s for s in (_as_float(m.get("surface_reelle_bati")) for m in mutations) if s is not None], dtype=float
    )
    area_km2 = math.pi * (radius_meters / 1000) ** 2

    last_sale = None
    dated = [m for m in mutations if m.get("date_mutation")]
    if dated:
        latest = max(dated, key=lambda m: m["date_mutation"])
        last_sale = LastSale(
            date=latest["date_mutation"],
            price=_as_float(latest.get("valeur_fonciere")),
            surface=_as_float(latest.get("surface_reelle_bati")),
        )

    return SalesStats(
        count=len(mutations),
        avg_price=float(prices.mean()) if prices.size else None,
        avg_surface=float(surfaces.mean()) if surfaces.size else None,
        density_per_km2=len(mutations) / area_km2 if area_km2 else 0.0,
        last_sale=last_sale,
    )


class DvfSalesDensity:
    """Sales-density capability: recent transactions around a point."""

    def __init__(self, http: HttpClient, url: str = DVF_URL):
        self.http = http
        self.url = url

    async def sales_density(self, lat: float, lng: float, radius_meters: float) -> Optional[SalesStats]:
        try:
            data = await self.http.get_json(
                self.url, params={"lat": lat, "lon": lng, "dist": int(radius_meters)}
            )
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            raise EnrichmentPartialFailure("sales-density", str(e) or type(e).__name__) from e
        if data is not None and not isinstance(data, dict):
            raise EnrichmentPartialFailure("sales-density", f"unexpected payload type {type(data).__name__}")

        mutations = [m for m in (data or {}).get("resultats") or [] if isinstance(m, dict)]
        if not mutations:
            logger.debug(f"📊 No DVF sales within {radius_meters}m of {lat:.5f},{lng:.5f}")
            return None
        try:
            return summarize_sales(mutations, radius_meters)
        except ValidationError as e:
            raise EnrichmentPartialFailure("sales-density", f"invalid sales payload: {e}") from e
