from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Sequence

from jsonschema import Draft202012Validator

logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "resource" / "contracts" / "scene_snapshot.v1.schema.json"


def is_valid_element(element: Any) -> bool:
    if not isinstance(element, dict):
        return False
    if not isinstance(element.get("id"), str) or not element["id"] or not element.get("type"):
        return False
    for key in ("x", "y"):
        value = element.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
    return True


class SceneStore:
    """JSON file holding ``{"elements": [...]}``; each save replaces the previous snapshot."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Optional[list[dict[str, Any]]]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("discarding unreadable scene snapshot %s: %s", self.path, e)
            self.remove()
            return None

        elements = data.get("elements") if isinstance(data, dict) else None
        if isinstance(elements, list):
            valid = [el for el in elements if is_valid_element(el)]
            if len(valid) < len(elements):
                logger.debug("dropped %d invalid elements from %s", len(elements) - len(valid), self.path)
            if valid:
                return valid

        self.remove()
        return None

    def save(self, elements: Sequence[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps({"elements": list(elements)}, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.path)

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


@lru_cache(maxsize=1)
def _snapshot_schema() -> dict[str, Any]:
    with SNAPSHOT_SCHEMA_PATH.open("r", encoding="utf-8") as f:
        return json.load(f)


def validate_snapshot(instance: Any) -> list[str]:
    validator = Draft202012Validator(_snapshot_schema())
    errors = sorted(validator.iter_errors(instance), key=lambda e: e.json_path)
    return [f"{e.json_path or '$'}: {e.message}" for e in errors]


__all__ = ["SceneStore", "is_valid_element", "validate_snapshot"]
