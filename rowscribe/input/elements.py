"""
Scene loading: turn a host canvas export into Element snapshots.

Accepts either a bare list of element dicts or an object with an
``elements`` list (the Excalidraw export shape). Freehand elements that
store ``points`` relative to their origin become absolute polylines.
Deleted elements and the host's own row decorations are skipped.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from ..models import Element
from ..utils.errors import InvalidElementError

logger = logging.getLogger(__name__)


def element_from_dict(data: Dict[str, Any]) -> Element:
    """
    Convert one exported element dict to an Element.

    Raises:
        InvalidElementError: If the element has no usable id.
    """
    element_id = data.get("id")
    if not isinstance(element_id, str) or not element_id:
        raise InvalidElementError(data)

    points = data.get("points")
    if points:
        origin_x = data.get("x") or 0.0
        origin_y = data.get("y") or 0.0
        return Element(
            id=element_id,
            xs=[origin_x + p[0] for p in points],
            ys=[origin_y + p[1] for p in points],
        )

    return Element.from_snapshot(data)


def parse_scene(scene: Union[List[Any], Dict[str, Any]]) -> List[Element]:
    """Extract live drawn elements from a scene object."""
    if isinstance(scene, dict):
        raw = scene.get("elements", [])
    else:
        raw = scene

    if not isinstance(raw, list):
        raise InvalidElementError(scene, reason="Scene 'elements' must be a list")

    elements = []
    skipped = 0
    for data in raw:
        if not isinstance(data, dict):
            raise InvalidElementError(data, reason="Scene elements must be objects")
        if data.get("isDeleted") or data.get("isRowInfo"):
            skipped += 1
            continue
        elements.append(element_from_dict(data))

    logger.debug("Parsed scene: %d elements, %d skipped", len(elements), skipped)
    return elements


def load_scene(path: Union[str, Path]) -> List[Element]:
    """Read a scene JSON file."""
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        scene = json.load(f)
    return parse_scene(scene)
