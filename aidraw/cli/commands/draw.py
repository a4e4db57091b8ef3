from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Optional

from ...config.loaders import AIConfig, apply_overrides, history_path, scene_path
from ...history.sessions import SessionStore
from ...pipeline.events import EventLogger
from ...pipeline.runner import DrawStream, ScenePipeline, feed_text
from ...scene.merger import SceneMerger
from ...scene.store import SceneStore


def _scene_store(args: Any) -> SceneStore:
    raw = getattr(args, "scene", None)
    return SceneStore(Path(raw).expanduser() if raw else scene_path(getattr(args, "environ", None)))


def _event_logger(args: Any) -> Optional[EventLogger]:
    raw = getattr(args, "events", None)
    return EventLogger(path=Path(raw).expanduser()) if raw else None


def _echo(delta: str) -> None:
    sys.stdout.write(delta)
    sys.stdout.flush()


def draw_cmd(*, args: Any, config: AIConfig) -> int:
    config = apply_overrides(
        config,
        api_key=getattr(args, "api_key", None),
        base_url=getattr(args, "base_url", None),
        model=getattr(args, "model", None),
    )
    merger = SceneMerger(store=_scene_store(args))
    selected_ids = getattr(args, "selected_ids", None) or []
    wanted = set(selected_ids)
    selected = [el for el in merger.snapshot() if el.get("id") in wanted]
    missing = sorted(wanted - {el["id"] for el in selected})
    if missing:
        print(f"warning: selected ids not in scene: {', '.join(missing)}", file=sys.stderr)

    sessions = SessionStore(history_path(getattr(args, "environ", None)))
    session_id = getattr(args, "session", None)
    if session_id and all(s.id != session_id for s in sessions.sessions):
        print(f"error: unknown chat session: {session_id}", file=sys.stderr)
        return 2

    record_raw = getattr(args, "record", None)
    stream = DrawStream(
        config=config,
        merger=merger,
        sessions=sessions,
        events=_event_logger(args),
        record_path=Path(record_raw).expanduser() if record_raw else None,
    )
    quiet = bool(getattr(args, "quiet", False))
    try:
        result = stream.run(
            args.prompt,
            selected=selected,
            session_id=session_id,
            on_delta=None if quiet else _echo,
        )
    except KeyboardInterrupt:
        stream.cancel()
        print("\ncancelled", file=sys.stderr)
        return 130

    if not quiet:
        print()
    if result.error is not None:
        print(f"error: {result.error}", file=sys.stderr)
        return 1
    print(f"created {result.created}, patched {result.patched}; scene has {len(merger)} elements")
    return 0


def _load_replay_text(path: Path) -> str:
    if path.suffix.lower() == ".jsonl":
        last = ""
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                obj = json.loads(line)
                last = str(obj.get("response") or "")
        return last
    return path.read_text(encoding="utf-8")


def replay_cmd(*, args: Any, config: AIConfig) -> int:
    _ = config
    text = _load_replay_text(Path(args.input).expanduser())
    chunk_size = max(1, int(getattr(args, "chunk_size", None) or 16))
    merger = SceneMerger(store=_scene_store(args))
    pipeline = ScenePipeline(merger, events=_event_logger(args))
    feed_text(pipeline, (text[i : i + chunk_size] for i in range(0, len(text), chunk_size)))
    print(f"created {pipeline.created}, patched {pipeline.patched}; scene has {len(merger)} elements")
    return 0
