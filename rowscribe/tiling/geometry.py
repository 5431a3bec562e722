"""
Tile layout and bounding-box geometry.

Pure functions with no raster access, so they can run on any thread.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from ..models import Box, Element
from ..utils import constants as C
from ..utils.errors import DegenerateGeometryError, InvalidTileParametersError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TilePosition:
    """Horizontal placement of one tile relative to the row's content box."""

    offset_x: float
    width: int


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def tile_positions(
    row_width: float,
    tile_size: int = C.TILE_SIZE,
    overlap_px: int = C.OVERLAP_PX,
) -> List[TilePosition]:
    """
    Lay out fixed-size overlapping tiles across a row of the given width.

    A row no wider than one tile gets a single tile at offset 0. Wider rows
    step by ``tile_size - overlap_px`` and use
    ``ceil((row_width - overlap_px) / stride)`` tiles.

    Raises:
        InvalidTileParametersError: For a negative or non-finite width, a
            non-positive tile size, or an overlap outside [0, tile_size).
    """
    if not _is_finite_number(row_width) or row_width < 0:
        raise InvalidTileParametersError(f"Invalid row width: {row_width!r}")
    if not _is_finite_number(tile_size) or tile_size <= 0:
        raise InvalidTileParametersError(f"Invalid tile size: {tile_size!r}")
    if not _is_finite_number(overlap_px) or not 0 <= overlap_px < tile_size:
        raise InvalidTileParametersError(
            f"Overlap must be in [0, {tile_size}), got {overlap_px!r}"
        )

    if row_width <= tile_size:
        return [TilePosition(offset_x=0, width=tile_size)]

    stride = tile_size - overlap_px
    count = math.ceil((row_width - overlap_px) / stride)
    return [TilePosition(offset_x=i * stride, width=tile_size) for i in range(count)]


def bounding_box(elements: Iterable[Any], id_set: Iterable[str]) -> Optional[Box]:
    """
    Union the boxes of every element whose id is in ``id_set``.

    Box-shaped and polyline-shaped elements are both supported. Elements
    without geometry are skipped.

    Returns:
        The union box, or None when nothing is selected.

    Raises:
        DegenerateGeometryError: If the union has zero or negative extent.
    """
    wanted = set(id_set)
    if not wanted:
        return None
    if isinstance(elements, dict):
        elements = elements.values()

    box: Optional[Box] = None
    for raw in elements:
        element = Element.from_snapshot(raw)
        if element.id not in wanted:
            continue

        bounds = element.bounds()
        if bounds is None:
            logger.warning("Element %s has no geometry, skipping", element.id)
            continue
        box = bounds if box is None else box.union(bounds)

    if box is None:
        return None
    if box.width <= 0 or box.height <= 0:
        raise DegenerateGeometryError(box.width, box.height)
    return box
