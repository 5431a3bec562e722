"""
Geometry events and the queue that feeds them to the partitioner.

The host pushes events as the user draws; a single consumer drains the
queue, which coalesces bursts (debouncing happens here, at the queue
boundary) and applies them under the partitioner's lock. Each transition
returns the ids of rows whose content changed, which is the work list for
the row processor.
"""

import json
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..input.elements import element_from_dict
from ..models import Element
from ..rows import RowPartitioner
from ..utils.errors import InvalidRowIdError

logger = logging.getLogger(__name__)

# Element properties that can move an element to another row
_GEOMETRY_KEYS = ("x", "y", "width", "height", "xs", "ys", "points", "isDeleted")


@dataclass(frozen=True)
class ElementsChanged:
    """Elements were added or their geometry changed."""

    elements: Tuple[Any, ...]


@dataclass(frozen=True)
class ElementsRemoved:
    element_ids: Tuple[str, ...]


@dataclass(frozen=True)
class RowActivated:
    row_id: str


Event = Union[ElementsChanged, ElementsRemoved, RowActivated]


def apply_event(partitioner: RowPartitioner, event: Event) -> Set[str]:
    """
    Apply one event to the partitioner.

    Returns:
        Ids of rows whose content changed. Activation changes no content.

    Raises:
        InvalidRowIdError / RowNotFoundError: For activation of a bad row.
        TypeError: For an unknown event type.
    """
    if isinstance(event, ElementsChanged):
        return partitioner.apply_changes(changed=event.elements)
    if isinstance(event, ElementsRemoved):
        return partitioner.apply_changes(removed=event.element_ids)
    if isinstance(event, RowActivated):
        partitioner.set_active_row(event.row_id)
        return set()
    raise TypeError(f"Unknown event type: {type(event).__name__}")


class EventQueue:
    """
    Thread-safe event queue with coalescing drain.

    Producers call put() from any thread; one consumer calls drain().
    Within a drain, the last change to an element wins, a removal cancels
    earlier changes, and only the last activation is applied (after the
    element changes, so it may target a row they created).
    """

    def __init__(self):
        self._events: List[Event] = []
        self._cond = threading.Condition()

    def put(self, event: Event) -> None:
        with self._cond:
            self._events.append(event)
            self._cond.notify_all()

    def put_all(self, events: Iterable[Event]) -> None:
        with self._cond:
            self._events.extend(events)
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._events)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until at least one event is queued. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: bool(self._events), timeout=timeout)

    def drain(self, partitioner: RowPartitioner) -> Set[str]:
        """
        Apply every queued event as one coalesced batch.

        Returns:
            Ids of rows whose content changed.
        """
        with self._cond:
            events, self._events = self._events, []
        if not events:
            return set()

        # element id -> latest snapshot, or None for removal
        pending: "OrderedDict[str, Optional[Any]]" = OrderedDict()
        activation: Optional[str] = None
        for event in events:
            if isinstance(event, ElementsChanged):
                for raw in event.elements:
                    element = Element.from_snapshot(raw)
                    if not isinstance(element.id, str) or not element.id:
                        logger.warning("Dropping element without an id: %r", raw)
                        continue
                    pending[element.id] = element
                    pending.move_to_end(element.id)
            elif isinstance(event, ElementsRemoved):
                for element_id in event.element_ids:
                    pending[element_id] = None
                    pending.move_to_end(element_id)
            elif isinstance(event, RowActivated):
                activation = event.row_id
            else:
                # The queue is already empty; keep the rest of the batch
                logger.warning("Ignoring unknown event type: %s", type(event).__name__)

        changed = [e for e in pending.values() if e is not None]
        removed = [
            element_id
            for element_id, e in pending.items()
            if e is None and partitioner.row_of_element(element_id) is not None
        ]

        with partitioner.lock:
            affected = partitioner.apply_changes(changed=changed, removed=removed)
            if activation is not None:
                try:
                    partitioner.set_active_row(activation)
                except InvalidRowIdError as e:
                    logger.warning("Ignoring activation of %s: %s", activation, e)

        logger.debug(
            "Drained %d events: %d changed, %d removed, %d rows affected",
            len(events),
            len(changed),
            len(removed),
            len(affected),
        )
        return affected


def _geometry_signature(data: Dict[str, Any]) -> str:
    return json.dumps({k: data.get(k) for k in _GEOMETRY_KEYS}, sort_keys=True, default=str)


def diff_scenes(
    previous: Iterable[Dict[str, Any]], current: Iterable[Dict[str, Any]]
) -> List[Event]:
    """
    Events that turn one raw scene snapshot into the next.

    Only geometry-relevant properties are compared, so style-only edits
    (color, stroke width) produce no events. Elements flagged ``isDeleted``
    count as removed.
    """
    before = {d["id"]: d for d in previous if isinstance(d, dict) and d.get("id")}
    after = {d["id"]: d for d in current if isinstance(d, dict) and d.get("id")}

    changed = []
    removed = []
    for element_id, data in after.items():
        if data.get("isDeleted"):
            if element_id in before and not before[element_id].get("isDeleted"):
                removed.append(element_id)
            continue
        old = before.get(element_id)
        if old is None or _geometry_signature(old) != _geometry_signature(data):
            changed.append(data)

    removed.extend(
        element_id
        for element_id, data in before.items()
        if element_id not in after and not data.get("isDeleted")
    )

    events: List[Event] = []
    if removed:
        events.append(ElementsRemoved(tuple(removed)))
    if changed:
        events.append(ElementsChanged(tuple(element_from_dict(d) for d in changed)))
    return events
