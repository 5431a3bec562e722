"""
Core data structures for rowscribe.

These dataclasses define the contract between layers: the row partitioner
produces Rows, the tiling engine produces Tiles, the recognizer pool returns
RecognitionResults and the assembler turns TileFragments into an
AssemblyResult.
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Tuple, Any, Set

import numpy as np
from PIL import Image


class OCRStatus(Enum):
    """Recognition state of a row."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class ValidationStatus(Enum):
    """Validation state of a row, written by an external checker."""

    UNCHECKED = "unchecked"
    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"


class RepairType(Enum):
    """Kinds of tile-boundary repair recorded by the assembler."""

    SIMILARITY = "similarity"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class Box:
    """Axis-aligned bounding box in canvas coordinates."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def union(self, other: "Box") -> "Box":
        return Box(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "minX": self.min_x,
            "minY": self.min_y,
            "maxX": self.max_x,
            "maxY": self.max_y,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class Element:
    """
    Snapshot of a drawn primitive owned by the host canvas.

    Either a box (x, y, width, height) or a polyline (xs, ys) describes the
    geometry. The core never owns elements; it only keeps id -> row links.
    """

    id: str
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    xs: Optional[List[float]] = None
    ys: Optional[List[float]] = None

    @classmethod
    def from_snapshot(cls, data: Any) -> "Element":
        """
        Build an Element from a host snapshot.

        Accepts an Element (returned as-is), or a mapping with either
        box keys or polyline keys. Polylines may be given as ``xs``/``ys``
        or as list-valued ``x``/``y``.
        """
        if isinstance(data, Element):
            return data
        if data is None:
            data = {}
        elif not isinstance(data, dict):
            data = {
                key: getattr(data, key, None)
                for key in ("id", "x", "y", "width", "height", "xs", "ys")
            }

        x, y = data.get("x"), data.get("y")
        xs, ys = data.get("xs"), data.get("ys")
        if isinstance(x, (list, tuple)) and isinstance(y, (list, tuple)):
            xs, ys, x, y = list(x), list(y), None, None

        return cls(
            id=data.get("id"),
            x=x,
            y=y,
            width=data.get("width"),
            height=data.get("height"),
            xs=xs,
            ys=ys,
        )

    @property
    def is_polyline(self) -> bool:
        return bool(self.xs) and bool(self.ys)

    def bounds(self) -> Optional[Box]:
        """
        Bounding box derived from the element geometry.

        Box elements keep their raw extent (a negative width yields a box
        with max_x < min_x). Returns None when there is no geometry.
        """
        if self.is_polyline:
            return Box(min(self.xs), min(self.ys), max(self.xs), max(self.ys))

        if self.x is None or self.y is None:
            return None

        width = self.width or 0.0
        height = self.height or 0.0
        return Box(self.x, self.y, self.x + width, self.y + height)

    def vertical_center(self) -> float:
        """(minY + maxY) / 2, NaN when the geometry is missing."""
        if self.is_polyline:
            return (min(self.ys) + max(self.ys)) / 2

        if not isinstance(self.y, (int, float)):
            return math.nan
        height = self.height if isinstance(self.height, (int, float)) else 0.0
        return (self.y + self.y + height) / 2


@dataclass
class Row:
    """A fixed-height horizontal band of the canvas, the unit of recognition."""

    id: str
    index: int
    y_start: float
    y_end: float
    element_ids: Set[str] = field(default_factory=set)
    ocr_status: OCRStatus = OCRStatus.PENDING
    validation_status: ValidationStatus = ValidationStatus.UNCHECKED
    transcribed_latex: Optional[str] = None
    tile_hash: Optional[str] = None
    error_message: Optional[str] = None
    last_modified: float = field(default_factory=time.time)
    is_active: bool = False
    activated_at: Optional[float] = None  # time.time(), same clock as the timeline

    @property
    def is_empty(self) -> bool:
        return not self.element_ids

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with element ids as a sorted list."""
        return {
            "id": self.id,
            "index": self.index,
            "yStart": self.y_start,
            "yEnd": self.y_end,
            "elementIds": sorted(self.element_ids),
            "ocrStatus": self.ocr_status.value,
            "validationStatus": self.validation_status.value,
            "transcribedLatex": self.transcribed_latex,
            "tileHash": self.tile_hash,
            "errorMessage": self.error_message,
            "lastModified": self.last_modified,
            "isActive": self.is_active,
            "activatedAt": self.activated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int) -> "Row":
        return cls(
            id=data["id"],
            index=index,
            y_start=data["yStart"],
            y_end=data["yEnd"],
            element_ids=set(data.get("elementIds") or []),
            ocr_status=_enum_or_default(OCRStatus, data.get("ocrStatus"), OCRStatus.PENDING),
            validation_status=_enum_or_default(
                ValidationStatus, data.get("validationStatus"), ValidationStatus.UNCHECKED
            ),
            transcribed_latex=data.get("transcribedLatex"),
            tile_hash=data.get("tileHash"),
            error_message=data.get("errorMessage"),
            last_modified=data.get("lastModified") or time.time(),
            is_active=bool(data.get("isActive", False)),
            activated_at=_timestamp(data.get("activatedAt")),
        )


def _timestamp(value) -> Optional[float]:
    # Older states stored ISO-8601 strings
    if not value:
        return None
    if isinstance(value, str):
        return datetime.fromisoformat(value).timestamp()
    return float(value)


def _enum_or_default(enum_cls, value, default):
    # Older states used "completed"/"validated"/"pending" spellings
    aliases = {"completed": "complete", "validated": "valid"}
    try:
        return enum_cls(aliases.get(value, value))
    except ValueError:
        return default


@dataclass(frozen=True)
class ActivationTimelineEntry:
    """One activation period of a row. Closed entries never change."""

    row_id: str
    activated_at: float
    deactivated_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.deactivated_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowId": self.row_id,
            "activatedAt": self.activated_at,
            "deactivatedAt": self.deactivated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivationTimelineEntry":
        return cls(
            row_id=data["rowId"],
            activated_at=data["activatedAt"],
            deactivated_at=data.get("deactivatedAt"),
        )


@dataclass
class GrayscaleImage:
    """
    Normalized tile raster: HxWx4 uint8, R == G == B, alpha preserved.
    """

    width: int
    height: int
    data: np.ndarray

    def to_pil(self) -> Image.Image:
        """RGB Pillow image for recognizers that take PIL input."""
        luminance = np.ascontiguousarray(self.data[:, :, 0])
        return Image.fromarray(luminance).convert("RGB")


@dataclass
class Tile:
    """
    A fixed-size raster window over one row.

    Exists only for one recognition pass; ``image`` is filled in by
    rendering and ``hash`` by hashing the rendered pixels.
    """

    row_id: str
    tile_index: int
    offset_x: float
    offset_y: float
    width: int
    height: int
    overlap_px: int
    hash: Optional[str] = None
    image: Optional[GrayscaleImage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowId": self.row_id,
            "tileIndex": self.tile_index,
            "offsetX": self.offset_x,
            "offsetY": self.offset_y,
            "width": self.width,
            "height": self.height,
            "overlap": self.overlap_px,
            "hash": self.hash,
        }


@dataclass
class OCRResult:
    """Result from one recognizer call."""

    latex: str
    confidence: float
    processing_time_ms: int


@dataclass
class RecognitionResult:
    """Terminal result for one tile: either text or an error."""

    row_id: str
    tile_index: int
    text: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 1
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TileFragment:
    """Recognized text of one tile, with the geometry the merge needs."""

    tile_index: int
    latex: str
    offset_x: float = 0.0
    width: float = 384
    overlap_px: float = 0.0

    @classmethod
    def from_tile(cls, tile: Tile, latex: str) -> "TileFragment":
        return cls(
            tile_index=tile.tile_index,
            latex=latex,
            offset_x=tile.offset_x,
            width=tile.width,
            overlap_px=tile.overlap_px,
        )


@dataclass
class RepairEntry:
    """A logged correction at one tile boundary."""

    type: RepairType
    tile_index: int
    edit_distance: Optional[int] = None
    similarity: float = 0.0
    original: Tuple[str, str] = ("", "")
    repaired: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"type": self.type.value, "tileIndex": self.tile_index}
        if self.type is RepairType.SIMILARITY:
            result["editDistance"] = self.edit_distance
        return result


@dataclass
class AssemblyResult:
    """One reconciled LaTeX string per row, with confidence accounting."""

    latex: str
    confidence: float
    repairs: List[RepairEntry] = field(default_factory=list)
    tile_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latex": self.latex,
            "confidence": self.confidence,
            "repairs": [r.to_dict() for r in self.repairs],
            "tileCount": self.tile_count,
        }
