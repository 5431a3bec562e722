"""
Raster sampling, grayscale normalization and tile hashing.

The host canvas supplies pixels through a RasterSource: anything with a
``sample(x, y, width, height)`` method (or a plain callable with the same
signature) returning an HxWx4 (RGBA) or HxWx3 (RGB) uint8 array.
"""

import hashlib
import math
from typing import Any, Callable, Iterable, Protocol, Tuple, Union

import numpy as np
from PIL import Image

from ..models import GrayscaleImage, Tile
from ..utils import constants as C
from ..utils.errors import RenderError


class RasterSource(Protocol):
    """Pixel provider for a region of the canvas, in canvas coordinates."""

    def sample(self, x: int, y: int, width: int, height: int) -> np.ndarray: ...


class ImageRasterSource:
    """
    RasterSource backed by a Pillow image of the canvas.

    Args:
        image: Rendered canvas (any mode; converted to RGBA once).
        origin_x, origin_y: Canvas coordinates of the image's top-left pixel.
        background: RGBA fill for regions outside the image.
    """

    def __init__(
        self,
        image: Image.Image,
        origin_x: float = 0,
        origin_y: float = 0,
        background: Tuple[int, int, int, int] = C.BACKGROUND_RGBA,
    ):
        self.pixels = np.asarray(image.convert("RGBA"), dtype=np.uint8)
        self.origin_x = origin_x
        self.origin_y = origin_y
        self.background = np.array(background, dtype=np.uint8)

    @classmethod
    def from_file(cls, path, **kwargs) -> "ImageRasterSource":
        with Image.open(path) as image:
            return cls(image, **kwargs)

    @property
    def size(self) -> Tuple[int, int]:
        height, width = self.pixels.shape[:2]
        return width, height

    def sample(self, x: int, y: int, width: int, height: int) -> np.ndarray:
        out = np.empty((height, width, 4), dtype=np.uint8)
        out[:] = self.background

        img_h, img_w = self.pixels.shape[:2]
        left = math.floor(x - self.origin_x)
        top = math.floor(y - self.origin_y)

        # Intersection of the requested window with the image
        src_x0, src_y0 = max(left, 0), max(top, 0)
        src_x1, src_y1 = min(left + width, img_w), min(top + height, img_h)
        if src_x1 > src_x0 and src_y1 > src_y0:
            out[src_y0 - top : src_y1 - top, src_x0 - left : src_x1 - left] = self.pixels[
                src_y0:src_y1, src_x0:src_x1
            ]
        return out


RasterLike = Union[RasterSource, Callable[[int, int, int, int], Any]]


def _sample(source: RasterLike, x: int, y: int, width: int, height: int) -> np.ndarray:
    if hasattr(source, "sample"):
        return source.sample(x, y, width, height)
    if callable(source):
        return source(x, y, width, height)
    raise RenderError(f"Unsupported raster source: {type(source).__name__}")


def render_tile_image(source: RasterLike, tile: Tile) -> GrayscaleImage:
    """
    Sample a tile's region and normalize it to grayscale.

    Each pixel becomes ``round(0.299 R + 0.587 G + 0.114 B)`` in all three
    color channels; alpha is kept. Rounding is half-up.

    Raises:
        RenderError: If the source fails or returns pixels of the wrong shape.
    """
    x, y = math.floor(tile.offset_x), math.floor(tile.offset_y)
    try:
        pixels = np.asarray(_sample(source, x, y, tile.width, tile.height))
    except RenderError:
        raise
    except Exception as e:
        raise RenderError(
            f"Failed to sample tile {tile.tile_index} of {tile.row_id}",
            technical_details=f"{type(e).__name__}: {e}",
        ) from e

    expected = (tile.height, tile.width)
    if pixels.ndim != 3 or pixels.shape[:2] != expected or pixels.shape[2] not in (3, 4):
        raise RenderError(
            f"Raster source returned shape {pixels.shape}, expected {expected} x RGBA"
        )

    rgb = pixels[:, :, :3].astype(np.float64)
    r_w, g_w, b_w = C.LUMA_WEIGHTS
    gray = np.floor(r_w * rgb[:, :, 0] + g_w * rgb[:, :, 1] + b_w * rgb[:, :, 2] + 0.5)
    gray = np.clip(gray, 0, 255).astype(np.uint8)

    data = np.empty((tile.height, tile.width, 4), dtype=np.uint8)
    data[:, :, :3] = gray[:, :, np.newaxis]
    data[:, :, 3] = pixels[:, :, 3] if pixels.shape[2] == 4 else 255

    return GrayscaleImage(width=tile.width, height=tile.height, data=data)


def tile_hash(image: Union[GrayscaleImage, np.ndarray, bytes]) -> str:
    """
    16-hex-character content digest of a tile raster.

    Not cryptographic; used for change detection and the recognition cache.
    The dimensions are mixed in so equal bytes in different shapes differ.
    """
    digest = hashlib.blake2b(digest_size=C.HASH_HEX_LENGTH // 2)

    if isinstance(image, GrayscaleImage):
        digest.update(f"{image.width}x{image.height}:".encode("ascii"))
        digest.update(np.ascontiguousarray(image.data).tobytes())
    elif isinstance(image, np.ndarray):
        digest.update(f"{'x'.join(map(str, image.shape))}:".encode("ascii"))
        digest.update(np.ascontiguousarray(image).tobytes())
    else:
        digest.update(bytes(image))

    return digest.hexdigest()


def row_tile_hash(hashes: Iterable[str]) -> str:
    """Combine per-tile hashes (in tile order) into one row digest."""
    digest = hashlib.blake2b(digest_size=C.HASH_HEX_LENGTH // 2)
    for h in hashes:
        digest.update(h.encode("ascii"))
        digest.update(b"|")
    return digest.hexdigest()
