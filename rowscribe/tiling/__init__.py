"""Tiling: bounding boxes, tile layout, grayscale rendering and content hashes."""

from .engine import TilingEngine
from .geometry import TilePosition, bounding_box, tile_positions
from .raster import (
    ImageRasterSource,
    RasterSource,
    render_tile_image,
    row_tile_hash,
    tile_hash,
)

__all__ = [
    "TilingEngine",
    "TilePosition",
    "bounding_box",
    "tile_positions",
    "ImageRasterSource",
    "RasterSource",
    "render_tile_image",
    "row_tile_hash",
    "tile_hash",
]
