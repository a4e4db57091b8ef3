from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ...config.loaders import AIConfig, scene_path
from ...scene.merger import SceneMerger
from ...scene.store import SceneStore, validate_snapshot


def _store(args: Any, attr: str = "scene") -> SceneStore:
    raw = getattr(args, attr, None)
    return SceneStore(Path(raw).expanduser() if raw else scene_path(getattr(args, "environ", None)))


def scene_show_cmd(*, args: Any, config: AIConfig) -> int:
    _ = config
    merger = SceneMerger(store=_store(args))
    elements = merger.snapshot()
    if getattr(args, "as_json", False):
        print(json.dumps({"elements": elements}, ensure_ascii=False, indent=2))
        return 0
    if not elements:
        print("scene is empty")
        return 0
    for el in elements:
        label = f" {el['text']!r}" if isinstance(el.get("text"), str) else ""
        deleted = " (deleted)" if el.get("isDeleted") else ""
        print(f"{el['id']}: {el.get('type')} at ({el.get('x')}, {el.get('y')}) {el.get('width')}x{el.get('height')}{label}{deleted}")
    return 0


def scene_clear_cmd(*, args: Any, config: AIConfig) -> int:
    _ = config
    store = _store(args)
    SceneMerger(store=store).clear()
    print(f"cleared: {store.path}")
    return 0


def scene_validate_cmd(*, args: Any, config: AIConfig) -> int:
    _ = config
    input_path = _store(args, "input").path
    with input_path.open("r", encoding="utf-8") as f:
        instance = json.load(f)
    errors = validate_snapshot(instance)
    if errors:
        print(f"INVALID: {input_path}")
        max_errors_arg = getattr(args, "max_errors", None)
        max_errors = int(max_errors_arg if max_errors_arg is not None else 50)
        for err in errors[:max_errors]:
            print(f"- {err}")
        if max_errors and len(errors) > max_errors:
            print(f"... {len(errors) - max_errors} more")
        return 1
    print(f"OK: {input_path}")
    return 0
