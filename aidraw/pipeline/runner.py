from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Union

from ..config.loaders import AIConfig, require_valid_config
from ..errors import ConfigInvalid, TransportError
from ..history.sessions import SessionStore
from ..prompts import SYSTEM_PROMPT, build_user_content
from ..scene.merger import SceneMerger
from ..scene.normalizer import Create, ElementMutation, Patch, normalize_candidates, now_ms
from ..stream.extractor import StreamBuffer
from ..stream.transport import StreamTransport, build_chat_request
from .events import EventLogger, NullEventLogger

logger = logging.getLogger(__name__)

ERROR_MESSAGE_PREFIX = "Sorry, an error occurred: "


def _utc_ts() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass
class DrawResult:
    text: str = ""
    created: int = 0
    patched: int = 0
    batches: int = 0
    error: Optional[str] = None
    cancelled: bool = False
    session_id: Optional[str] = None
    message_id: Optional[str] = None
    elements: List[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class ScenePipeline:
    """
    Extract → normalize → merge for one stream of text deltas.

    Each ``feed`` runs to completion before returning; the cost of a pass is
    bounded by the text that has not yet been consumed.
    """

    def __init__(
        self,
        merger: SceneMerger,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
        events: Union[EventLogger, NullEventLogger, None] = None,
        parent_span_id: Optional[str] = None,
    ) -> None:
        self.merger = merger
        self.rng = rng if rng is not None else merger.rng
        self.clock = clock
        self.events = events or NullEventLogger()
        self.parent_span_id = parent_span_id
        self.buffer = StreamBuffer()
        self.created = 0
        self.patched = 0
        self.batches = 0

    def _apply(self) -> List[ElementMutation]:
        candidates = self.buffer.drain()
        if not candidates:
            return []
        mutations = normalize_candidates(candidates, rng=self.rng, clock=self.clock)
        if len(mutations) < len(candidates):
            logger.debug("skipped %d malformed candidates", len(candidates) - len(mutations))
        if not mutations:
            return []
        self.merger.apply_batch(mutations)
        creates = sum(1 for m in mutations if isinstance(m, Create))
        patches = sum(1 for m in mutations if isinstance(m, Patch))
        self.created += creates
        self.patched += patches
        self.batches += 1
        self.events.log(
            event_type="scene.batch",
            parent_span_id=self.parent_span_id,
            payload={
                "candidates": len(candidates),
                "creates": creates,
                "patches": patches,
                "ids": [m.id for m in mutations],
                "processed_length": self.buffer.processed_length,
                "scene_size": len(self.merger),
            },
        )
        return mutations

    def feed(self, delta: str) -> List[ElementMutation]:
        self.buffer.append(delta)
        return self._apply()

    def finish(self) -> List[ElementMutation]:
        return self._apply()

    @property
    def text(self) -> str:
        return self.buffer.text


def feed_text(pipeline: ScenePipeline, chunks: Iterable[str]) -> ScenePipeline:
    for chunk in chunks:
        pipeline.feed(chunk)
    pipeline.finish()
    return pipeline


def _record_response(path: Path, *, model: str, user_content: str, response: str, error: Optional[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    entry = {"ts": _utc_ts(), "model": model, "prompt": user_content, "response": response, "error": error}
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")


class DrawStream:
    """One prompt → one streamed reply merged into the scene. Not reusable."""

    def __init__(
        self,
        *,
        config: AIConfig,
        merger: SceneMerger,
        sessions: Optional[SessionStore] = None,
        events: Optional[EventLogger] = None,
        transport_factory: Optional[Callable[[AIConfig], StreamTransport]] = None,
        system_prompt: str = SYSTEM_PROMPT,
        record_path: Optional[Path] = None,
    ) -> None:
        self.config = config
        self.merger = merger
        self.sessions = sessions
        self.events = events or NullEventLogger()
        self.transport_factory = transport_factory or (
            lambda cfg: StreamTransport(api_key=cfg.api_key, base_url=cfg.base_url)
        )
        self.system_prompt = system_prompt
        self.record_path = record_path
        self._transport: Optional[StreamTransport] = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._transport is not None:
            self._transport.close()

    def _fail(self, result: DrawResult, span: Optional[str], error: str, *, status: Optional[int] = None) -> None:
        if result.error is None:
            result.error = error
        self.events.log(event_type="stream.error", parent_span_id=span, payload={"error": error, "status": status})

    def run(
        self,
        prompt: str,
        *,
        selected: Iterable[dict[str, Any]] = (),
        session_id: Optional[str] = None,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> DrawResult:
        result = DrawResult()
        try:
            require_valid_config(self.config)
        except ConfigInvalid as e:
            logger.error("%s", e)
            result.error = str(e)
            result.text = ERROR_MESSAGE_PREFIX + str(e)
            return result

        user_content = build_user_content(prompt, selected)
        body = build_chat_request(model=self.config.model, system_prompt=self.system_prompt, user_content=user_content)

        if self.sessions is not None:
            session_id = session_id or self.sessions.current_session_id or self.sessions.create_session()
            self.sessions.add_message(session_id, "user", prompt)
            result.session_id = session_id
            result.message_id = self.sessions.add_message(session_id, "assistant", "")

        span = self.events.log(
            event_type="stream.start",
            payload={"model": self.config.model, "url": self.config.base_url, "prompt": user_content},
        )
        pipeline = ScenePipeline(self.merger, events=self.events, parent_span_id=span)
        self._transport = self.transport_factory(self.config)
        stream_iter = self._transport.stream(body)
        deltas = 0
        try:
            for delta in stream_iter:
                if self._cancelled:
                    break
                deltas += 1
                if on_delta is not None:
                    on_delta(delta)
                pipeline.feed(delta)
        except TransportError as e:
            logger.error("stream failed: %s", e)
            self._fail(result, span, str(e), status=e.status)
        except Exception as e:
            logger.exception("stream processing failed")
            self._fail(result, span, f"stream processing failed: {e}")
        finally:
            stream_iter.close()
            self._transport = None

        result.cancelled = self._cancelled
        try:
            pipeline.finish()
        except Exception as e:
            logger.exception("stream processing failed")
            self._fail(result, span, f"stream processing failed: {e}")
        result.text = pipeline.text
        if result.error is not None:
            result.text += ("\n\n" if result.text else "") + ERROR_MESSAGE_PREFIX + result.error
        result.created = pipeline.created
        result.patched = pipeline.patched
        result.batches = pipeline.batches
        result.elements = self.merger.snapshot()

        if self.sessions is not None and result.session_id and result.message_id:
            self.sessions.update_message(result.session_id, result.message_id, result.text)
        if self.record_path is not None:
            _record_response(
                self.record_path,
                model=self.config.model,
                user_content=user_content,
                response=pipeline.text,
                error=result.error,
            )
        self.events.log(
            event_type="stream.end",
            parent_span_id=span,
            payload={
                "deltas": deltas,
                "chars": len(pipeline.text),
                "created": result.created,
                "patched": result.patched,
                "cancelled": result.cancelled,
                "error": result.error,
            },
        )
        return result


def run_draw_stream(
    prompt: str,
    *,
    config: AIConfig,
    merger: SceneMerger,
    sessions: Optional[SessionStore] = None,
    events: Optional[EventLogger] = None,
    selected: Iterable[dict[str, Any]] = (),
    on_delta: Optional[Callable[[str], None]] = None,
    record_path: Optional[Path] = None,
) -> DrawResult:
    stream = DrawStream(config=config, merger=merger, sessions=sessions, events=events, record_path=record_path)
    return stream.run(prompt, selected=selected, on_delta=on_delta)


__all__ = [
    "DrawResult",
    "DrawStream",
    "ERROR_MESSAGE_PREFIX",
    "ScenePipeline",
    "feed_text",
    "run_draw_stream",
]
