from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Iterable, Iterator, Optional, Sequence

import requests

from ..errors import TransportError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def extract_delta_content(payload: Any) -> str:
    """Return ``choices[0].delta.content`` from a chat-completion chunk, or ``""``."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class SSEDecoder:
    """
    Incremental decoder for ``data: <json>`` server-sent event lines.

    Bytes are fed in arbitrary pieces. The UTF-8 decode state and the trailing
    partial line survive between feeds, so a frame (or a multi-byte character)
    split across two deliveries is reassembled before it is parsed.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, data: bytes | str) -> list[str]:
        if self.done:
            return []
        if isinstance(data, bytes):
            self._buffer += self._decoder.decode(data)
        else:
            self._buffer += data

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._process_lines(lines)

    def finish(self) -> list[str]:
        """Flush the decoder and give the trailing partial line one last attempt."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        deltas = self._process_lines([rest]) if rest.strip() else []
        self.done = True
        return deltas

    def _process_lines(self, lines: Sequence[str]) -> list[str]:
        deltas: list[str] = []
        for line in lines:
            trimmed = line.strip()
            if not trimmed.startswith(DATA_PREFIX):
                continue
            data = trimmed[len(DATA_PREFIX) :]
            if data == DONE_SENTINEL:
                self.done = True
                self._buffer = ""
                break
            try:
                payload = json.loads(data)
            except ValueError:
                logger.debug("skipping malformed frame: %.100s", data)
                continue
            content = extract_delta_content(payload)
            if content:
                deltas.append(content)
        return deltas


def iter_sse_deltas(chunks: Iterable[bytes | str]) -> Iterator[str]:
    decoder = SSEDecoder()
    for chunk in chunks:
        if not chunk:
            continue
        yield from decoder.feed(chunk)
        if decoder.done:
            return
    yield from decoder.finish()


def chat_completions_url(base_url: str) -> str:
    return base_url.rstrip("/") + "/chat/completions"


def build_chat_request(*, model: str, system_prompt: str, user_content: str) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        "stream": True,
    }


class StreamTransport:
    """
    POSTs a streaming chat request and yields content deltas as they arrive.

    One instance drives one stream. ``close()`` may be called at any time to
    abandon the stream; the underlying connection is released and iteration
    stops at the next chunk boundary.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_key = api_key
        self.url = chat_completions_url(base_url)
        self.session = session
        self.timeout = timeout
        self._response: Optional[requests.Response] = None
        self._closed = False

    def _post(self, body: dict[str, Any]) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        poster = self.session.post if self.session is not None else requests.post
        try:
            return poster(self.url, headers=headers, data=json.dumps(body), stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"request failed: {e}") from e

    def stream(self, body: dict[str, Any]) -> Iterator[str]:
        response = self._post(body)
        self._response = response
        try:
            if not response.ok:
                text = response.text
                raise TransportError(
                    f"API request failed: {response.status_code} {text}",
                    status=response.status_code,
                    body=text,
                )
            decoder = SSEDecoder()
            try:
                for chunk in response.iter_content(chunk_size=None):
                    if self._closed:
                        logger.debug("stream closed by consumer")
                        return
                    if not chunk:
                        continue
                    yield from decoder.feed(chunk)
                    if decoder.done:
                        return
            except requests.RequestException as e:
                raise TransportError(f"stream read failed: {e}", status=response.status_code) from e
            yield from decoder.finish()
        finally:
            response.close()
            self._response = None

    def close(self) -> None:
        self._closed = True
        if self._response is not None:
            self._response.close()


__all__ = [
    "DONE_SENTINEL",
    "SSEDecoder",
    "StreamTransport",
    "build_chat_request",
    "chat_completions_url",
    "extract_delta_content",
    "iter_sse_deltas",
]
