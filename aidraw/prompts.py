from __future__ import annotations

import json
from typing import Any, Iterable

SYSTEM_PROMPT = """You are a diagram assistant that draws on an Excalidraw-style canvas.

Reply with a sequence of JSON objects, one element per object, and nothing that
is not needed to explain the drawing. Do not wrap the objects in an array.

To create an element, emit an object with at least:
  id (unique string), type (one of: rectangle, ellipse, diamond, text, arrow, line),
  x, y (numbers), width, height (numbers).
Optional style fields: strokeColor, backgroundColor, fillStyle ("solid", "hachure",
"cross-hatch"), strokeWidth, roughness, opacity, angle.
Text elements carry "text" and may set fontSize. Arrows and lines may carry
"points" as a list of [dx, dy] pairs relative to (x, y).

To modify an element that already exists, emit an object with its id and only the
fields to change, e.g. {"id": "box1", "backgroundColor": "#a5d8ff"}.

Lay elements out so they do not overlap, and label shapes with text elements
placed inside or next to them.
"""

SELECTION_FIELDS = ("id", "type", "x", "y", "width", "height", "angle", "text", "strokeColor", "backgroundColor")


def describe_selection(elements: Iterable[dict[str, Any]]) -> str:
    lines = []
    for element in elements:
        compact = {k: element[k] for k in SELECTION_FIELDS if k in element}
        lines.append(json.dumps(compact, ensure_ascii=False, separators=(",", ":")))
    return "\n".join(lines)


def build_user_content(prompt: str, selected: Iterable[dict[str, Any]] = ()) -> str:
    description = describe_selection(selected)
    if not description:
        return prompt
    return f"{prompt}\n\nCurrently selected elements:\n{description}"


__all__ = ["SYSTEM_PROMPT", "build_user_content", "describe_selection"]
