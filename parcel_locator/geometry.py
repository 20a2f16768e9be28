"""
Planar helpers for candidate generation and terrain scoring.
Uses the flat ~111 km/degree approximation throughout; good enough at
parcel scale and consistent between grid enumeration and area estimation.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from parcel_locator.config import METERS_PER_DEGREE
from parcel_locator.models import BoundingBox, Point

EARTH_RADIUS_METERS = 6_371_000


@dataclass(frozen=True)
class GridCell:
    """One cell of a grid plan: indices in the full grid plus its center."""
    row: int
    col: int
    center: Point
    size_degrees: float

    @property
    def polygon(self) -> List[Point]:
        return square_around(self.center, self.size_degrees)


def haversine_meters(a: Point, b: Point) -> float:
    """Great-circle distance between two points, in meters."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def square_around(center: Point, size_degrees: float) -> List[Point]:
    """Axis-aligned square of side `size_degrees` centred on `center`."""
    half = size_degrees / 2
    return [
        Point(center.lat - half, center.lng - half),
        Point(center.lat + half, center.lng - half),
        Point(center.lat + half, center.lng + half),
        Point(center.lat - half, center.lng + half),
    ]


def polygon_area_m2(polygon: Sequence[Point]) -> float:
    """
    Shoelace area of a lat/lng polygon converted to square meters.

    Returns 0 for degenerate polygons (fewer than three vertices).
    """
    if len(polygon) < 3:
        return 0.0
    lngs = np.array([p.lng for p in polygon], dtype=float)
    lats = np.array([p.lat for p in polygon], dtype=float)
    area_deg2 = 0.5 * abs(np.dot(lngs, np.roll(lats, -1)) - np.dot(lats, np.roll(lngs, -1)))
    return float(area_deg2 * METERS_PER_DEGREE ** 2)


def grid_plan(bbox: BoundingBox, cell_size_meters: float, max_cells: int) -> List[GridCell]:
    """
    Enumerate grid cells covering `bbox`, thinned evenly to at most `max_cells`.

    The full grid has ceil(height / cell) rows and ceil(width / cell) columns.
    When it holds more than `max_cells` cells, the same stride is applied to
    rows and columns so the kept cells still cover the whole box. Pure and
    deterministic: same inputs, same cells in the same row-major order.
    """
    if max_cells <= 0 or cell_size_meters <= 0:
        return []
    step = cell_size_meters / METERS_PER_DEGREE
    rows = max(1, math.ceil(round((bbox.max_lat - bbox.min_lat) / step, 9)))
    cols = max(1, math.ceil(round((bbox.max_lng - bbox.min_lng) / step, 9)))

    stride = 1
    if rows * cols > max_cells:
        stride = math.ceil(math.sqrt(rows * cols / max_cells))
        while math.ceil(rows / stride) * math.ceil(cols / stride) > max_cells:
            stride += 1

    cells: List[GridCell] = []
    for row in range(0, rows, stride):
        for col in range(0, cols, stride):
            center = Point(bbox.min_lat + (row + 0.5) * step, bbox.min_lng + (col + 0.5) * step)
            cells.append(GridCell(row=row, col=col, center=center, size_degrees=step))
    return cells
