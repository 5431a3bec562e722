"""
Tiling engine: row content -> fixed-size overlapping tiles ready for recognition.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Optional

from ..models import Row, Tile
from ..utils import constants as C
from ..utils.config import TilingConfig
from .geometry import bounding_box, tile_positions
from .raster import RasterLike, render_tile_image, tile_hash

logger = logging.getLogger(__name__)


class TilingEngine:
    """
    Cut a row's content into 384x384 tiles with a fixed horizontal overlap.

    Usage:
        engine = TilingEngine()
        tiles = engine.extract_tiles_with_images(row, elements, raster_source)
        for tile in tiles:
            print(tile.tile_index, tile.offset_x, tile.hash)
    """

    def __init__(
        self,
        tile_size: int = C.TILE_SIZE,
        overlap_px: int = C.OVERLAP_PX,
        render_workers: int = 1,
    ):
        # Validates the parameters up front rather than on first use
        tile_positions(0, tile_size, overlap_px)

        self.tile_size = tile_size
        self.overlap_px = overlap_px
        self.render_workers = max(1, render_workers)

    @classmethod
    def from_config(cls, config: TilingConfig) -> "TilingEngine":
        return cls(
            tile_size=config.tile_size,
            overlap_px=config.overlap_px,
            render_workers=config.render_workers,
        )

    def extract_tiles(self, row: Row, elements: Iterable[Any]) -> List[Tile]:
        """
        Tile metadata for a row, without pixels.

        Tiles start at the content box's left edge and the row's top edge.
        The first tile has overlap 0, every later tile ``overlap_px``.
        An empty row yields no tiles.

        Raises:
            DegenerateGeometryError: If the row's content box has no extent.
        """
        box = bounding_box(elements, row.element_ids)
        if box is None:
            logger.debug("Row %s is empty, no tiles", row.id)
            return []

        positions = tile_positions(box.width, self.tile_size, self.overlap_px)
        return [
            Tile(
                row_id=row.id,
                tile_index=i,
                offset_x=box.min_x + pos.offset_x,
                offset_y=row.y_start,
                width=self.tile_size,
                height=self.tile_size,
                overlap_px=0 if i == 0 else self.overlap_px,
            )
            for i, pos in enumerate(positions)
        ]

    def extract_tiles_with_images(
        self,
        row: Row,
        elements: Iterable[Any],
        source: RasterLike,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> List[Tile]:
        """
        Extract tiles, then render and hash each one.

        Tiles read disjoint raster windows, so rendering may run on a thread
        pool: the given executor, or a private one when render_workers > 1.
        """
        start = time.perf_counter()
        tiles = self.extract_tiles(row, elements)

        def render(tile: Tile) -> Tile:
            tile.image = render_tile_image(source, tile)
            tile.hash = tile_hash(tile.image)
            return tile

        if executor is not None and len(tiles) > 1:
            tiles = list(executor.map(render, tiles))
        elif self.render_workers > 1 and len(tiles) > 1:
            with ThreadPoolExecutor(max_workers=self.render_workers) as pool:
                tiles = list(pool.map(render, tiles))
        else:
            tiles = [render(tile) for tile in tiles]

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > C.ROW_TILING_BUDGET_MS:
            logger.warning(
                "Tiling %s took %.1fms for %d tiles (budget %.0fms)",
                row.id,
                elapsed_ms,
                len(tiles),
                C.ROW_TILING_BUDGET_MS,
            )
        else:
            logger.debug("Tiled %s: %d tiles in %.1fms", row.id, len(tiles), elapsed_ms)

        return tiles
