from __future__ import annotations

import json
import random
import tempfile
import unittest
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from aidraw.config.loaders import AIConfig
from aidraw.errors import TransportError
from aidraw.history.sessions import SessionStore
from aidraw.pipeline.events import EventLogger
from aidraw.pipeline.runner import ERROR_MESSAGE_PREFIX, DrawStream, ScenePipeline, feed_text
from aidraw.scene.merger import SceneMerger
from aidraw.scene.store import SceneStore

CONFIG = AIConfig(api_key="k", base_url="https://api.example.com/v1", model="test-model")


class _FakeTransport:
    def __init__(self, deltas: Sequence[str], *, error: Optional[TransportError] = None) -> None:
        self.deltas = list(deltas)
        self.error = error
        self.bodies: list[dict[str, Any]] = []
        self.closed = False

    def stream(self, body: dict[str, Any]) -> Iterator[str]:
        self.bodies.append(body)
        for delta in self.deltas:
            if self.closed:
                return
            yield delta
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True


def _merger() -> SceneMerger:
    return SceneMerger(rng=random.Random(0), clock=lambda: 5)


class TestScenePipeline(unittest.TestCase):
    def test_chunked_reply_builds_scene(self) -> None:
        merger = _merger()
        pipeline = ScenePipeline(merger)
        pipeline.feed('{"id":"a","type":"rectangle","x":0,"y":0,"widt')
        self.assertEqual(len(merger), 0)
        pipeline.feed('h":10,"height":10}{"id":"b"}')
        self.assertEqual([el["id"] for el in merger.snapshot()], ["a"])
        self.assertEqual(merger.get("a")["width"], 10)
        self.assertEqual(merger.get("a")["strokeColor"], "#1e1e1e")
        self.assertEqual(pipeline.created, 1)
        self.assertEqual(pipeline.patched, 1)

    def test_prose_and_idless_objects_are_skipped(self) -> None:
        merger = _merger()
        text = 'Hello {"a": "}"} World {"id":"c","type":"ellipse","x":5,"y":5,"width":3,"height":3}'
        feed_text(ScenePipeline(merger), [text[i : i + 4] for i in range(0, len(text), 4)])
        snapshot = merger.snapshot()
        self.assertEqual([el["id"] for el in snapshot], ["c"])
        self.assertEqual(snapshot[0]["roundness"], {"type": 3})

    def test_malformed_object_does_not_stall(self) -> None:
        merger = _merger()
        pipeline = ScenePipeline(merger)
        pipeline.feed('{"id": "x", oops} {"id":"ok","type":"diamond","x":1,"y":1}')
        self.assertEqual([el["id"] for el in merger.snapshot()], ["ok"])
        self.assertEqual(pipeline.buffer.remaining, "")

    def test_patch_after_create_across_deltas(self) -> None:
        merger = _merger()
        pipeline = ScenePipeline(merger)
        pipeline.feed('{"id":"a","type":"rectangle","x":0,"y":0}')
        pipeline.feed(' now recolor {"id":"a","backgroundColor":"#b2f2bb"}')
        self.assertEqual(merger.get("a")["backgroundColor"], "#b2f2bb")
        self.assertEqual(merger.get("a")["version"], 2)


class TestDrawStream(unittest.TestCase):
    def test_successful_stream_updates_scene_history_and_events(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp_path = Path(tmpdir)
            transport = _FakeTransport(['Sure! {"id":"r","type":"rect', 'angle","x":0,"y":0}', ' done'])
            merger = SceneMerger(store=SceneStore(tmp_path / "scene.json"), rng=random.Random(0))
            sessions = SessionStore(tmp_path / "history.json")
            stream = DrawStream(
                config=CONFIG,
                merger=merger,
                sessions=sessions,
                events=EventLogger(path=tmp_path / "events.jsonl"),
                transport_factory=lambda cfg: transport,
                system_prompt="SYS",
                record_path=tmp_path / "record.jsonl",
            )
            seen: list[str] = []
            result = stream.run("draw a box", selected=[{"id": "old", "type": "ellipse", "x": 1, "y": 2, "seed": 9}], on_delta=seen.append)

            self.assertTrue(result.ok)
            self.assertEqual(result.created, 1)
            self.assertEqual(seen, transport.deltas)
            self.assertEqual(result.text, "".join(transport.deltas))
            self.assertEqual([el["id"] for el in result.elements], ["r"])

            body = transport.bodies[0]
            self.assertEqual(body["model"], "test-model")
            self.assertTrue(body["stream"])
            self.assertEqual(body["messages"][0], {"role": "system", "content": "SYS"})
            user = body["messages"][1]["content"]
            self.assertTrue(user.startswith("draw a box\n\nCurrently selected elements:\n"))
            self.assertIn('"id":"old"', user)
            self.assertNotIn("seed", user)

            saved = json.loads((tmp_path / "scene.json").read_text(encoding="utf-8"))
            self.assertEqual([el["id"] for el in saved["elements"]], ["r"])

            messages = sessions.current_session.messages
            self.assertEqual([m.role for m in messages], ["user", "assistant"])
            self.assertEqual(messages[1].content, result.text)

            event_types = [
                json.loads(line)["event_type"]
                for line in (tmp_path / "events.jsonl").read_text(encoding="utf-8").splitlines()
            ]
            self.assertEqual(event_types, ["stream.start", "scene.batch", "stream.end"])

            record = json.loads((tmp_path / "record.jsonl").read_text(encoding="utf-8").splitlines()[0])
            self.assertEqual(record["response"], result.text)

    def test_invalid_config_sends_nothing(self) -> None:
        def _factory(cfg: AIConfig) -> _FakeTransport:
            raise AssertionError("transport must not be created")

        stream = DrawStream(config=AIConfig(api_key="", base_url="https://x"), merger=_merger(), transport_factory=_factory)
        result = stream.run("draw")
        self.assertFalse(result.ok)
        self.assertIn("api_key", result.error or "")
        self.assertTrue(result.text.startswith(ERROR_MESSAGE_PREFIX))

    def test_transport_error_keeps_merged_elements_and_appends_message(self) -> None:
        merger = _merger()
        transport = _FakeTransport(
            ['{"id":"a","type":"rectangle","x":0,"y":0}', '{"id":"b","ty'],
            error=TransportError("stream read failed: reset", status=200),
        )
        sessions = SessionStore(None)
        stream = DrawStream(config=CONFIG, merger=merger, sessions=sessions, transport_factory=lambda cfg: transport)
        result = stream.run("draw")
        self.assertFalse(result.ok)
        self.assertEqual([el["id"] for el in merger.snapshot()], ["a"])
        self.assertTrue(result.text.startswith('{"id":"a"'))
        self.assertTrue(result.text.endswith(ERROR_MESSAGE_PREFIX + "stream read failed: reset"))
        self.assertEqual(sessions.current_session.messages[-1].content, result.text)

    def test_cancel_stops_stream_without_rollback(self) -> None:
        merger = _merger()
        transport = _FakeTransport(['{"id":"a","type":"line","x":0,"y":0}', '{"id":"b","type":"line","x":0,"y":0}'])
        stream = DrawStream(config=CONFIG, merger=merger, transport_factory=lambda cfg: transport)
        result = stream.run("draw", on_delta=lambda delta: stream.cancel())
        self.assertTrue(result.cancelled)
        self.assertTrue(transport.closed)
        self.assertEqual([el["id"] for el in merger.snapshot()], ["a"])

    def test_scene_failure_is_reported_and_recorded(self) -> None:
        class _BrokenMerger(SceneMerger):
            def apply_batch(self, mutations):  # type: ignore[override]
                raise RuntimeError("disk full")

        merger = _BrokenMerger(rng=random.Random(0), clock=lambda: 5)
        transport = _FakeTransport(['{"id":"a","type":"rectangle","x":0,"y":0}', "done"])
        sessions = SessionStore(None)
        with tempfile.TemporaryDirectory() as tmpdir:
            events_path = Path(tmpdir) / "events.jsonl"
            stream = DrawStream(
                config=CONFIG,
                merger=merger,
                sessions=sessions,
                events=EventLogger(path=events_path),
                transport_factory=lambda cfg: transport,
            )
            with self.assertLogs("aidraw.pipeline.runner", level="ERROR"):
                result = stream.run("draw")
            event_types = [json.loads(line)["event_type"] for line in events_path.read_text(encoding="utf-8").splitlines()]
        self.assertFalse(result.ok)
        self.assertIn("disk full", result.error or "")
        self.assertTrue(result.text.endswith(ERROR_MESSAGE_PREFIX + (result.error or "")))
        self.assertEqual(sessions.current_session.messages[-1].content, result.text)
        self.assertIn("stream.error", event_types)
        self.assertEqual(event_types[-1], "stream.end")


if __name__ == "__main__":
    unittest.main()
