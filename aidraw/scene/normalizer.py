from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Union

from ..stream.extractor import CandidateObject

logger = logging.getLogger(__name__)

SHAPE_TYPES = ("rectangle", "ellipse", "diamond", "text", "arrow", "line")
LINEAR_TYPES = ("arrow", "line")

DEFAULT_STROKE_COLOR = "#1e1e1e"
DEFAULT_BACKGROUND_COLOR = "transparent"
DEFAULT_LINEAR_WIDTH = 100
DEFAULT_LINEAR_HEIGHT = 0

SEED_RANGE = 100_000
VERSION_NONCE_RANGE = 1_000_000_000


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Create:
    id: str
    fields: dict[str, Any]

    @property
    def type(self) -> str:
        return str(self.fields.get("type"))


@dataclass(frozen=True)
class Patch:
    id: str
    fields: dict[str, Any] = field(default_factory=dict)


ElementMutation = Union[Create, Patch]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_create_payload(payload: dict[str, Any]) -> bool:
    return payload.get("type") in SHAPE_TYPES and _is_number(payload.get("x")) and _is_number(payload.get("y"))


def default_element_props(rng: random.Random, *, timestamp: int) -> dict[str, Any]:
    return {
        "angle": 0,
        "strokeColor": DEFAULT_STROKE_COLOR,
        "backgroundColor": DEFAULT_BACKGROUND_COLOR,
        "fillStyle": "solid",
        "strokeWidth": 2,
        "roughness": 1,
        "opacity": 100,
        "seed": rng.randrange(SEED_RANGE),
        "version": 1,
        "versionNonce": rng.randrange(VERSION_NONCE_RANGE),
        "isDeleted": False,
        "groupIds": [],
        "boundElements": None,
        "updated": timestamp,
        "link": None,
        "locked": False,
    }


def type_specific_props(shape_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    if shape_type == "text":
        text = payload.get("text")
        return {
            "fontSize": 20,
            "fontFamily": 1,
            "textAlign": "center",
            "verticalAlign": "middle",
            "baseline": 18,
            "containerId": None,
            "originalText": text if isinstance(text, str) else "",
            "lineHeight": 1.25,
        }

    if shape_type in LINEAR_TYPES:
        width = payload.get("width") or DEFAULT_LINEAR_WIDTH
        height = payload.get("height") or DEFAULT_LINEAR_HEIGHT
        return {
            "points": payload.get("points") or [[0, 0], [width, height]],
            "lastCommittedPoint": None,
            "startBinding": None,
            "endBinding": None,
            "startArrowhead": None,
            "endArrowhead": "arrow" if shape_type == "arrow" else None,
        }

    return {"roundness": {"type": 3}}


def decode_candidate(candidate: Union[CandidateObject, str]) -> Optional[dict[str, Any]]:
    text = candidate.text if isinstance(candidate, CandidateObject) else candidate
    try:
        payload = json.loads(text)
    except ValueError:
        logger.warning("failed to parse element: %.100s", text)
        return None
    if not isinstance(payload, dict):
        return None
    element_id = payload.get("id")
    if not isinstance(element_id, str) or not element_id:
        logger.debug("discarding object without id: %.100s", text)
        return None
    return payload


def normalize_payload(
    payload: dict[str, Any],
    *,
    rng: Optional[random.Random] = None,
    clock: Callable[[], int] = now_ms,
) -> ElementMutation:
    element_id = str(payload["id"])
    if not is_create_payload(payload):
        return Patch(id=element_id, fields=dict(payload))

    rng = rng or random.Random()
    shape_type = str(payload["type"])
    fields: dict[str, Any] = {}
    fields.update(default_element_props(rng, timestamp=clock()))
    fields.update(type_specific_props(shape_type, payload))
    fields.update(payload)
    return Create(id=element_id, fields=fields)


def normalize_candidate(
    candidate: Union[CandidateObject, str],
    *,
    rng: Optional[random.Random] = None,
    clock: Callable[[], int] = now_ms,
) -> Optional[ElementMutation]:
    payload = decode_candidate(candidate)
    if payload is None:
        return None
    return normalize_payload(payload, rng=rng, clock=clock)


def normalize_candidates(
    candidates: Iterable[Union[CandidateObject, str]],
    *,
    rng: Optional[random.Random] = None,
    clock: Callable[[], int] = now_ms,
) -> List[ElementMutation]:
    mutations: List[ElementMutation] = []
    for candidate in candidates:
        mutation = normalize_candidate(candidate, rng=rng, clock=clock)
        if mutation is not None:
            mutations.append(mutation)
    return mutations


__all__ = [
    "Create",
    "ElementMutation",
    "Patch",
    "SHAPE_TYPES",
    "decode_candidate",
    "default_element_props",
    "is_create_payload",
    "normalize_candidate",
    "normalize_candidates",
    "normalize_payload",
    "type_specific_props",
]
