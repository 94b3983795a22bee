"""
Element array lookup inside a parsed model response.

Models do not wrap the element list consistently, so several shapes are
accepted, checked in a fixed priority order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from numbers import Real
from typing import Any

ElementRecord = dict[str, Any]


class ElementShape(str, Enum):
    """Where in the parsed value the element array was found."""

    ARRAY = "array"
    ELEMENTS = "elements"
    DATA_LIST = "data[0].elements"
    DATA_OBJECT = "data.elements"


@dataclass(frozen=True)
class ExtractedElements:
    """An element array plus the shape it was found in."""

    elements: list[Any]
    shape: ElementShape

    def __len__(self) -> int:
        return len(self.elements)


def extract_elements(value: Any) -> ExtractedElements | None:
    """
    Find the element array in a parsed JSON value.

    Checked in order:
        1. the value itself is a list
        2. ``{"elements": [...]}``
        3. ``{"data": [{"elements": [...]}, ...]}``
        4. ``{"data": {"elements": [...]}}``

    Returns:
        ExtractedElements, or None if no shape matches
    """
    if isinstance(value, list):
        return ExtractedElements(value, ElementShape.ARRAY)

    if not isinstance(value, dict):
        return None

    elements = value.get("elements")
    if isinstance(elements, list):
        return ExtractedElements(elements, ElementShape.ELEMENTS)

    data = value.get("data")
    if isinstance(data, list) and data:
        first = data[0]
        if isinstance(first, dict) and isinstance(first.get("elements"), list):
            return ExtractedElements(first["elements"], ElementShape.DATA_LIST)

    if isinstance(data, dict) and isinstance(data.get("elements"), list):
        return ExtractedElements(data["elements"], ElementShape.DATA_OBJECT)

    return None


def is_element_record(item: Any) -> bool:
    """Whether ``item`` has the minimum fields a renderer needs."""
    if not isinstance(item, dict):
        return False
    if not isinstance(item.get("id"), str) or not isinstance(item.get("type"), str):
        return False
    for axis in ("x", "y"):
        coord = item.get(axis)
        # bool is a Real subclass
        if isinstance(coord, bool) or not isinstance(coord, Real):
            return False
    return True


def find_incomplete_records(elements: list[Any]) -> list[int]:
    """Indices of entries missing ``id``, ``type`` or numeric ``x``/``y``."""
    return [index for index, item in enumerate(elements) if not is_element_record(item)]
