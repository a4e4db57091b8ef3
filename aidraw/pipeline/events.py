from __future__ import annotations

import json
import time
import uuid
from pathlib import Path
from typing import Any, Optional


def _utc_ts() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class EventLogger:
    """Append-only JSONL event trail for one or more streams."""

    def __init__(self, *, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def log(
        self,
        *,
        event_type: str,
        payload: dict[str, Any],
        span_id: Optional[str] = None,
        parent_span_id: Optional[str] = None,
    ) -> str:
        span = span_id or uuid.uuid4().hex
        obj: dict[str, Any] = {
            "ts": _utc_ts(),
            "event_type": event_type,
            "span_id": span,
            "parent_span_id": parent_span_id,
            "payload": payload,
        }
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
        return span


class NullEventLogger:
    def log(self, *, event_type: str, payload: dict[str, Any], span_id: Optional[str] = None, parent_span_id: Optional[str] = None) -> str:
        _ = (event_type, payload, parent_span_id)
        return span_id or uuid.uuid4().hex


__all__ = ["EventLogger", "NullEventLogger"]
