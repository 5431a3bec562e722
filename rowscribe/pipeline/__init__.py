"""Recognition pipeline: event queue, recognizer pool and row processor."""

from .cache import TileTextCache
from .events import (
    ElementsChanged,
    ElementsRemoved,
    EventQueue,
    RowActivated,
    apply_event,
    diff_scenes,
)
from .processor import RowOutcome, RowProcessor, SweepReport
from .worker_pool import RecognizerPool

__all__ = [
    "TileTextCache",
    "ElementsChanged",
    "ElementsRemoved",
    "EventQueue",
    "RowActivated",
    "apply_event",
    "diff_scenes",
    "RowOutcome",
    "RowProcessor",
    "SweepReport",
    "RecognizerPool",
]
