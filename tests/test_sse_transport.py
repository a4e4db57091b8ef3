from __future__ import annotations

import json
import unittest
from typing import Any, Iterable, Iterator
from unittest.mock import patch

import requests

from aidraw.errors import TransportError
from aidraw.stream.transport import (
    SSEDecoder,
    StreamTransport,
    build_chat_request,
    chat_completions_url,
    iter_sse_deltas,
)


def _frame(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False) + "\n"


class _FakeResponse:
    def __init__(self, *, status_code: int = 200, chunks: Iterable[Any] = (), text: str = "", fail_after: int = -1) -> None:
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self.text = text
        self._chunks = list(chunks)
        self._fail_after = fail_after
        self.closed = False

    def iter_content(self, chunk_size: Any = None) -> Iterator[bytes]:
        _ = chunk_size
        for idx, chunk in enumerate(self._chunks):
            if idx == self._fail_after:
                raise requests.ConnectionError("connection reset")
            yield chunk

    def close(self) -> None:
        self.closed = True


class TestSSEDecoder(unittest.TestCase):
    def test_done_sentinel_ends_stream(self) -> None:
        raw = 'data: {"choices":[{"delta":{"content":"partial"}}]}\ndata: [DONE]\n' + _frame("ignored")
        deltas = list(iter_sse_deltas([raw.encode("utf-8")]))
        self.assertEqual(deltas, ["partial"])

    def test_done_sentinel_discards_buffered_tail(self) -> None:
        decoder = SSEDecoder()
        self.assertEqual(decoder.feed(b'data: {"choices":[{"delta":{"content":"a"}}]}\ndata: [DONE]\ndata: {"cho'), ["a"])
        self.assertTrue(decoder.done)
        self.assertEqual(decoder.feed(_frame("b").encode("utf-8")), [])
        self.assertEqual(decoder.finish(), [])

    def test_line_split_across_chunks(self) -> None:
        raw = (_frame("hello") + _frame(" world")).encode("utf-8")
        chunks = [raw[:10], raw[10:37], raw[37:]]
        self.assertEqual(list(iter_sse_deltas(chunks)), ["hello", " world"])

    def test_multibyte_character_split(self) -> None:
        raw = _frame("画布✨").encode("utf-8")
        idx = raw.index("画".encode("utf-8")) + 1
        chunks = [raw[:idx], raw[idx : idx + 1], raw[idx + 1 :]]
        self.assertEqual(list(iter_sse_deltas(chunks)), ["画布✨"])

    def test_malformed_frame_is_skipped(self) -> None:
        raw = "data: {not json\n" + _frame("ok") + ": comment\n\n"
        self.assertEqual(list(iter_sse_deltas([raw])), ["ok"])

    def test_empty_and_missing_content_not_emitted(self) -> None:
        raw = _frame("") + 'data: {"choices":[{"delta":{"role":"assistant"}}]}\n' + 'data: {"choices":[]}\n' + _frame("x")
        self.assertEqual(list(iter_sse_deltas([raw])), ["x"])

    def test_trailing_partial_line_processed_at_end(self) -> None:
        raw = _frame("first") + _frame("last").rstrip("\n")
        self.assertEqual(list(iter_sse_deltas([raw.encode("utf-8")])), ["first", "last"])

    def test_crlf_line_endings(self) -> None:
        raw = _frame("a").replace("\n", "\r\n") + "data: [DONE]\r\n"
        self.assertEqual(list(iter_sse_deltas([raw.encode("utf-8")])), ["a"])


class TestStreamTransport(unittest.TestCase):
    def test_request_body_shape(self) -> None:
        body = build_chat_request(model="m", system_prompt="SYS", user_content="draw a box")
        self.assertEqual(
            body,
            {
                "model": "m",
                "messages": [{"role": "system", "content": "SYS"}, {"role": "user", "content": "draw a box"}],
                "stream": True,
            },
        )
        self.assertEqual(chat_completions_url("https://api.example.com/v1/"), "https://api.example.com/v1/chat/completions")

    def test_streams_deltas_and_posts_request(self) -> None:
        raw = (_frame("a") + _frame("b") + "data: [DONE]\n").encode("utf-8")
        response = _FakeResponse(chunks=[raw[:7], raw[7:]])
        with patch("aidraw.stream.transport.requests.post", return_value=response) as post:
            transport = StreamTransport(api_key="sk-test", base_url="https://api.example.com/v1")
            deltas = list(transport.stream({"model": "m", "messages": [], "stream": True}))
        self.assertEqual(deltas, ["a", "b"])
        self.assertTrue(response.closed)
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://api.example.com/v1/chat/completions")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test")
        self.assertTrue(kwargs["stream"])
        self.assertEqual(json.loads(kwargs["data"])["stream"], True)

    def test_non_success_status_raises(self) -> None:
        response = _FakeResponse(status_code=401, text='{"error":"bad key"}')
        with patch("aidraw.stream.transport.requests.post", return_value=response):
            transport = StreamTransport(api_key="k", base_url="https://x")
            with self.assertRaises(TransportError) as ctx:
                list(transport.stream({}))
        self.assertEqual(ctx.exception.status, 401)
        self.assertIn("bad key", ctx.exception.body or "")
        self.assertTrue(response.closed)

    def test_read_failure_keeps_emitted_deltas(self) -> None:
        response = _FakeResponse(chunks=[_frame("kept").encode("utf-8"), b"unused"], fail_after=1)
        received: list[str] = []
        with patch("aidraw.stream.transport.requests.post", return_value=response):
            transport = StreamTransport(api_key="k", base_url="https://x")
            with self.assertRaises(TransportError):
                for delta in transport.stream({}):
                    received.append(delta)
        self.assertEqual(received, ["kept"])
        self.assertTrue(response.closed)

    def test_connection_failure_raises_transport_error(self) -> None:
        with patch("aidraw.stream.transport.requests.post", side_effect=requests.ConnectionError("refused")):
            transport = StreamTransport(api_key="k", base_url="https://x")
            with self.assertRaises(TransportError):
                list(transport.stream({}))

    def test_close_stops_delivery(self) -> None:
        response = _FakeResponse(chunks=[_frame("one").encode("utf-8"), _frame("two").encode("utf-8")])
        received: list[str] = []
        with patch("aidraw.stream.transport.requests.post", return_value=response):
            transport = StreamTransport(api_key="k", base_url="https://x")
            for delta in transport.stream({}):
                received.append(delta)
                transport.close()
        self.assertEqual(received, ["one"])
        self.assertTrue(response.closed)


if __name__ == "__main__":
    unittest.main()
