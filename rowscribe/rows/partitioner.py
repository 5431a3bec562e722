"""
Row partitioner: the authoritative mapping from vertical position to row.

Rows live in an arena (a list) with a hash index from row id to arena slot,
and a second hash map links element ids to row ids. Every lookup and
assignment is O(1) amortized regardless of how many rows exist.
"""

import logging
import math
import re
import threading
import time
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set

from ..models import (
    ActivationTimelineEntry,
    Element,
    OCRStatus,
    Row,
    ValidationStatus,
)
from ..utils import constants as C
from ..utils.config import PartitionConfig
from ..utils.errors import (
    InvalidElementError,
    InvalidRowIdError,
    RowNotFoundError,
    StateRestoreError,
)

logger = logging.getLogger(__name__)

_ROW_ID_RE = re.compile(r"^row-(\d+)$")

# Fields a caller may change through update_row()
_UPDATABLE_FIELDS = {
    "ocr_status",
    "validation_status",
    "transcribed_latex",
    "tile_hash",
    "error_message",
    "is_active",
}


def row_id_for_index(index: int) -> str:
    return f"{C.ROW_ID_PREFIX}{index}"


def parse_row_id(row_id: Any) -> int:
    """
    Return the row index encoded in a row id.

    Raises:
        InvalidRowIdError: If row_id is not a string of the form 'row-<n>'.
    """
    if not isinstance(row_id, str):
        raise InvalidRowIdError(row_id)
    match = _ROW_ID_RE.match(row_id)
    if not match:
        raise InvalidRowIdError(row_id)
    return int(match.group(1))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RowPartitioner:
    """
    Partition the canvas into fixed-height rows and track element membership.

    All mutations go through one re-entrant lock, so the partitioner can be
    shared between the event consumer and recognition threads. Read-only
    queries take the same lock only when they may create a row lazily.

    Usage:
        rows = RowPartitioner(row_height=384)
        row_id = rows.assign_element({"id": "e1", "x": 0, "y": 10, "width": 40, "height": 30})
        rows.set_active_row(row_id)
        state = rows.serialize()
    """

    def __init__(
        self,
        row_height: float = C.ROW_HEIGHT,
        start_y: float = C.START_Y,
        canvas_min_y: Optional[float] = None,
        canvas_max_y: float = C.CANVAS_MAX_Y,
    ):
        config = PartitionConfig(
            row_height=row_height,
            start_y=start_y,
            canvas_min_y=start_y if canvas_min_y is None else canvas_min_y,
            canvas_max_y=canvas_max_y,
        )
        self._apply_config(config)

        self._rows: List[Row] = []
        self._slots: Dict[str, int] = {}
        self._element_to_row: Dict[str, str] = {}
        self._active_row_id: Optional[str] = None
        self._timeline: List[ActivationTimelineEntry] = []
        self._revisions: Dict[str, int] = {}
        self._lock = threading.RLock()

        logger.debug(
            "Initialized partitioner: row_height=%s start_y=%s", row_height, start_y
        )

    @classmethod
    def from_config(cls, config: PartitionConfig) -> "RowPartitioner":
        return cls(
            row_height=config.row_height,
            start_y=config.start_y,
            canvas_min_y=config.canvas_min_y,
            canvas_max_y=config.canvas_max_y,
        )

    @classmethod
    def from_state(cls, state: Dict[str, Any]) -> "RowPartitioner":
        partitioner = cls()
        partitioner.deserialize(state)
        return partitioner

    def _apply_config(self, config: PartitionConfig) -> None:
        self.row_height = config.row_height
        self.start_y = config.start_y
        self.canvas_min_y = config.canvas_min_y
        self.canvas_max_y = config.canvas_max_y

    # === Queries ===

    @property
    def lock(self) -> threading.RLock:
        """The mutation lock, for callers that batch several operations."""
        return self._lock

    @property
    def active_row_id(self) -> Optional[str]:
        return self._active_row_id

    @property
    def active_row(self) -> Optional[Row]:
        if self._active_row_id is None:
            return None
        return self.get_row(self._active_row_id)

    @property
    def element_to_row(self) -> Dict[str, str]:
        """Copy of the element id -> row id index."""
        return dict(self._element_to_row)

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._slots

    def row_for_y(self, y: float) -> Optional[Row]:
        """
        Get the row containing a Y coordinate, creating it lazily.

        Returns None (with a warning) for non-numeric or non-finite input.
        """
        if not _is_number(y) or not math.isfinite(y):
            logger.warning("Invalid Y coordinate provided to row_for_y: %r", y)
            return None

        return self._get_or_create(self._index_for_y(y))

    def get_row(self, row_id: str) -> Optional[Row]:
        """Look up a row by id. Returns None for unknown ids."""
        if not isinstance(row_id, str):
            logger.warning("Invalid row id provided to get_row: %r", row_id)
            return None

        slot = self._slots.get(row_id)
        return self._rows[slot] if slot is not None else None

    def all_rows(self) -> List[Row]:
        """All tracked rows ordered top to bottom."""
        with self._lock:
            return sorted(self._rows, key=lambda r: r.index)

    def row_of_element(self, element_id: str) -> Optional[str]:
        return self._element_to_row.get(element_id)

    def is_row_active(self, row_id: str) -> bool:
        return self._active_row_id == row_id

    def activation_timeline(self) -> List[ActivationTimelineEntry]:
        """Chronological activation history (a copy; entries are immutable)."""
        with self._lock:
            return list(self._timeline)

    def content_revision(self, row_id: str) -> int:
        """Counter bumped whenever a row's membership or geometry changes."""
        return self._revisions.get(row_id, 0)

    def rows_in_viewport(self, viewport: Any) -> List[Row]:
        """
        Rows whose band intersects [viewport.y, viewport.y + viewport.height].

        The viewport may be a mapping or an object with ``y`` and ``height``.
        Invalid input yields an empty list and a warning.
        """
        top, height = _viewport_bounds(viewport)
        if top is None:
            logger.warning("Invalid viewport provided to rows_in_viewport: %r", viewport)
            return []

        bottom = top + height
        with self._lock:
            first = self._index_for_y(top)
            last = self._index_for_y(bottom)

            # Probe the index range directly unless it is wider than the arena
            if last - first + 1 <= len(self._rows):
                candidates = (
                    self._rows[self._slots[row_id_for_index(i)]]
                    for i in range(first, last + 1)
                    if row_id_for_index(i) in self._slots
                )
            else:
                candidates = iter(self._rows)

            visible = [r for r in candidates if r.y_start < bottom and r.y_end > top]

        return sorted(visible, key=lambda r: r.index)

    def is_element_in_active_row(self, element: Any) -> bool:
        """
        Check whether an element's vertical extent overlaps the active row.

        Always True when no row is active.
        """
        active = self.active_row
        if active is None:
            return True

        element = Element.from_snapshot(element)
        bounds = element.bounds()
        if bounds is None:
            return False
        return bounds.max_y > active.y_start and bounds.min_y < active.y_end

    # === Mutations ===

    def assign_element(self, element: Any) -> str:
        """
        Assign an element to the row containing its vertical center.

        A previous assignment to a different row is removed first. Both
        rows are stamped as modified and their recognition reset to pending.

        Args:
            element: Element or host snapshot mapping with an 'id'.

        Returns:
            Id of the row the element now belongs to.

        Raises:
            InvalidElementError: If the element has no usable id.
        """
        element = Element.from_snapshot(element)
        if not isinstance(element.id, str) or not element.id:
            logger.error("Invalid element provided to assign_element: %r", element)
            raise InvalidElementError(element)

        center_y = self._clamped_center(element)

        with self._lock:
            target = self._get_or_create(self._index_for_y(center_y))
            previous_id = self._element_to_row.get(element.id)
            now = time.time()

            if previous_id is not None and previous_id != target.id:
                self._detach(element.id, previous_id, now)

            target.element_ids.add(element.id)
            self._element_to_row[element.id] = target.id
            self._mark_changed(target, now)

        logger.debug(
            "Assigned element %s to %s (center_y=%.1f, elements=%d)",
            element.id,
            target.id,
            center_y,
            len(target.element_ids),
        )
        return target.id

    def remove_element(self, element_id: str) -> Optional[str]:
        """
        Remove an element from its row. Idempotent.

        Returns:
            Id of the row it was removed from, or None if it was unknown.
        """
        if not isinstance(element_id, str):
            logger.warning("Invalid element id provided to remove_element: %r", element_id)
            return None

        with self._lock:
            previous_id = self._element_to_row.get(element_id)
            if previous_id is None:
                logger.warning("remove_element: unknown element id %s", element_id)
                return None
            self._detach(element_id, previous_id, time.time())

        return previous_id

    def apply_changes(
        self,
        changed: Iterable[Any] = (),
        removed: Iterable[str] = (),
    ) -> Set[str]:
        """
        Apply a batch of geometry changes and removals.

        Snapshots without a usable id are skipped with a warning before
        anything is applied, so one bad snapshot never splits the batch.

        Returns:
            Ids of every row whose content changed (old and new rows of moves).
        """
        elements = []
        for snapshot in changed:
            element = Element.from_snapshot(snapshot)
            if not isinstance(element.id, str) or not element.id:
                logger.warning("Skipping element without an id in batch: %r", snapshot)
                continue
            elements.append(element)

        affected: Set[str] = set()
        with self._lock:
            for element_id in removed:
                previous_id = self.remove_element(element_id)
                if previous_id is not None:
                    affected.add(previous_id)

            for element in elements:
                previous_id = self._element_to_row.get(element.id)
                if previous_id is not None:
                    affected.add(previous_id)
                affected.add(self.assign_element(element))

        return affected

    def update_row(self, row_id: str, **changes: Any) -> Row:
        """
        Update row metadata.

        Changes to ``is_active`` go through set_active_row() /
        clear_active_row() so the single-active-row invariant holds.

        Raises:
            InvalidRowIdError / RowNotFoundError: For bad or unknown row ids.
            ValueError: For fields that cannot be updated.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update row fields: {sorted(unknown)}")

        with self._lock:
            row = self._require_row(row_id)

            if "is_active" in changes:
                if changes.pop("is_active"):
                    self.set_active_row(row_id)
                elif row.is_active:
                    self.clear_active_row()

            if "ocr_status" in changes:
                changes["ocr_status"] = OCRStatus(changes["ocr_status"])
            if "validation_status" in changes:
                changes["validation_status"] = ValidationStatus(changes["validation_status"])

            for name, value in changes.items():
                setattr(row, name, value)
            row.last_modified = time.time()

        logger.debug("Updated %s: %s", row_id, sorted(changes))
        return row

    def set_active_row(self, row_id: str) -> Row:
        """
        Make a row the single active row.

        Deactivates the previous active row, closes its timeline entry and
        appends an open entry for the new one. Re-activating the current
        active row is a no-op.

        Raises:
            InvalidRowIdError: If row_id is malformed.
            RowNotFoundError: If the row does not exist.
        """
        with self._lock:
            row = self._require_row(row_id)
            if self._active_row_id == row_id:
                return row

            now = time.time()
            previous_id = self._active_row_id
            self._close_active(now)

            row.is_active = True
            row.activated_at = now
            self._active_row_id = row_id
            self._timeline.append(ActivationTimelineEntry(row_id=row_id, activated_at=now))

        logger.debug("Active row changed: %s -> %s", previous_id, row_id)
        return row

    def clear_active_row(self) -> None:
        """Deactivate the active row, if any."""
        with self._lock:
            self._close_active(time.time())

    def create_new_row(self) -> str:
        """
        Create an empty row directly below the active row.

        Without an active row, the new row goes below the lowest existing one.
        """
        with self._lock:
            active = self.active_row
            if active is not None:
                index = active.index + 1
            elif self._rows:
                index = max(r.index for r in self._rows) + 1
            else:
                index = 0
            row = self._get_or_create(index)

        logger.info("Created new row %s", row.id)
        return row.id

    # === Persistence ===

    def serialize(self) -> Dict[str, Any]:
        """Full partitioner state in the canonical stored shape."""
        with self._lock:
            return {
                "rowHeight": self.row_height,
                "startY": self.start_y,
                "rows": [row.to_dict() for row in self.all_rows()],
                "elementToRow": dict(sorted(self._element_to_row.items())),
                "activeRowId": self._active_row_id,
                "activationTimeline": [e.to_dict() for e in self._timeline],
            }

    def deserialize(self, state: Dict[str, Any]) -> None:
        """
        Replace the partitioner state with a serialized one.

        States saved before active-row tracking existed (no ``activeRowId`` /
        ``activationTimeline``) restore with no active row.

        Raises:
            StateRestoreError: If the state is not a mapping or a row is corrupt.
        """
        if not isinstance(state, dict):
            raise StateRestoreError(
                f"Invalid state: expected a mapping, got {type(state).__name__}"
            )

        start = time.perf_counter()
        config = PartitionConfig(
            row_height=state.get("rowHeight") or C.ROW_HEIGHT,
            start_y=state.get("startY") or C.START_Y,
            canvas_min_y=self.canvas_min_y,
            canvas_max_y=self.canvas_max_y,
        )

        rows: List[Row] = []
        slots: Dict[str, int] = {}
        for data in state.get("rows") or []:
            try:
                row = Row.from_dict(data, parse_row_id(data.get("id")))
            except (InvalidRowIdError, KeyError, TypeError, ValueError, AttributeError) as e:
                raise StateRestoreError(
                    "Corrupt row in saved state",
                    technical_details=f"{type(e).__name__}: {e}; row={data!r}",
                )
            if row.id in slots:
                logger.warning("Duplicate row %s in saved state, keeping the first", row.id)
                continue
            slots[row.id] = len(rows)
            rows.append(row)

        element_to_row = _restore_membership(rows, slots, state.get("elementToRow"))

        active_row_id = state.get("activeRowId")
        if active_row_id is not None and active_row_id not in slots:
            logger.warning("Saved active row %s does not exist, clearing it", active_row_id)
            active_row_id = None
        for row in rows:
            row.is_active = row.id == active_row_id
            if row.ocr_status is OCRStatus.PROCESSING:
                # A pass interrupted by the save never finished
                row.ocr_status = OCRStatus.PENDING

        timeline = _restore_timeline(state.get("activationTimeline"), active_row_id)

        with self._lock:
            self._apply_config(config)
            self._rows = rows
            self._slots = slots
            self._element_to_row = element_to_row
            self._active_row_id = active_row_id
            self._timeline = timeline
            self._revisions = {}

        logger.info(
            "State restored: %d rows, %d elements, active=%s in %.1fms",
            len(rows),
            len(element_to_row),
            active_row_id,
            (time.perf_counter() - start) * 1000,
        )

    # === Internals ===

    def _index_for_y(self, y: float) -> int:
        # Coordinates above the first row map to row 0
        return max(0, math.floor((y - self.start_y) / self.row_height))

    def _clamped_center(self, element: Element) -> float:
        center = element.vertical_center()
        if not math.isfinite(center):
            logger.warning(
                "Element %s has non-finite center %r, clamping to canvas bounds",
                element.id,
                center,
            )
            center = self.canvas_max_y if center == math.inf else self.canvas_min_y

        return min(max(center, self.canvas_min_y), self.canvas_max_y)

    def _get_or_create(self, index: int) -> Row:
        row_id = row_id_for_index(index)
        slot = self._slots.get(row_id)
        if slot is not None:
            return self._rows[slot]

        with self._lock:
            # Another thread may have created it while we waited
            slot = self._slots.get(row_id)
            if slot is not None:
                return self._rows[slot]

            y_start = self.start_y + index * self.row_height
            row = Row(id=row_id, index=index, y_start=y_start, y_end=y_start + self.row_height)
            self._slots[row_id] = len(self._rows)
            self._rows.append(row)

        logger.debug("Created row %s [%s, %s)", row_id, row.y_start, row.y_end)
        return row

    def _require_row(self, row_id: str) -> Row:
        parse_row_id(row_id)
        row = self.get_row(row_id)
        if row is None:
            logger.error("Row %s not found", row_id)
            raise RowNotFoundError(row_id)
        return row

    def _detach(self, element_id: str, row_id: str, now: float) -> None:
        row = self.get_row(row_id)
        if row is not None:
            row.element_ids.discard(element_id)
            self._mark_changed(row, now)
        self._element_to_row.pop(element_id, None)

    def _mark_changed(self, row: Row, now: float) -> None:
        row.last_modified = now
        row.ocr_status = OCRStatus.PENDING
        self._revisions[row.id] = self._revisions.get(row.id, 0) + 1

    def _close_active(self, now: float) -> None:
        if self._active_row_id is None:
            return

        previous = self.get_row(self._active_row_id)
        if previous is not None:
            previous.is_active = False

        for i in range(len(self._timeline) - 1, -1, -1):
            entry = self._timeline[i]
            if entry.row_id == self._active_row_id and entry.is_open:
                self._timeline[i] = replace(entry, deactivated_at=now)
                break

        self._active_row_id = None


def _viewport_bounds(viewport: Any):
    if viewport is None:
        return None, None
    if isinstance(viewport, dict):
        top, height = viewport.get("y"), viewport.get("height")
    else:
        top, height = getattr(viewport, "y", None), getattr(viewport, "height", None)

    if not (_is_number(top) and _is_number(height)):
        return None, None
    if not (math.isfinite(top) and math.isfinite(height)) or height < 0:
        return None, None
    # Finite inputs can still overflow once added
    if not math.isfinite(top + height):
        return None, None
    return top, height


def _restore_timeline(
    stored: Any, active_row_id: Optional[str]
) -> List[ActivationTimelineEntry]:
    """
    Rebuild the activation timeline so at most one entry is open and it
    belongs to the restored active row.

    Stray open entries are closed when the next activation began, or at
    restore time when nothing followed them.
    """
    try:
        timeline = [ActivationTimelineEntry.from_dict(entry) for entry in stored or []]
    except (KeyError, TypeError, AttributeError) as e:
        raise StateRestoreError(
            "Corrupt activation timeline in saved state",
            technical_details=f"{type(e).__name__}: {e}",
        )

    now = time.time()
    # Only the newest entry of the active row may stay open
    keep_open = None
    if active_row_id is not None:
        for i in range(len(timeline) - 1, -1, -1):
            if timeline[i].row_id == active_row_id:
                keep_open = i if timeline[i].is_open else None
                break

    for i, entry in enumerate(timeline):
        if entry.is_open and i != keep_open:
            closed_at = timeline[i + 1].activated_at if i + 1 < len(timeline) else now
            logger.warning("Closing stale timeline entry for %s", entry.row_id)
            timeline[i] = replace(entry, deactivated_at=closed_at)

    return timeline


def _restore_membership(
    rows: List[Row], slots: Dict[str, int], stored: Any
) -> Dict[str, str]:
    """
    Rebuild element id -> row id from the rows, which are authoritative.

    An element listed in several rows stays in the row the stored index
    names (or the first one seen) and is dropped from the others.
    """
    stored = stored if isinstance(stored, dict) else {}
    element_to_row: Dict[str, str] = {}

    for row in rows:
        for element_id in list(row.element_ids):
            owner = element_to_row.get(element_id)
            preferred = stored.get(element_id)
            if owner is None:
                element_to_row[element_id] = row.id
            elif preferred == row.id and owner != row.id:
                rows[slots[owner]].element_ids.discard(element_id)
                element_to_row[element_id] = row.id
            else:
                row.element_ids.discard(element_id)

    if stored and stored != element_to_row:
        logger.warning("Stored element index disagreed with row contents; rebuilt it")

    return element_to_row
