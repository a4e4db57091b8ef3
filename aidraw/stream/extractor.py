from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class CandidateObject:
    text: str
    end: int  # offset just past the closing brace, relative to the scanned slice


@dataclass(frozen=True)
class ExtractResult:
    objects: List[CandidateObject]
    processed_length: int


def _find_object_end(text: str, start: int) -> int:
    """Return the index just past the brace closing the object opened at ``start``, or -1."""
    depth = 0
    in_string = False
    escape = False
    for j in range(start, len(text)):
        char = text[j]
        if escape:
            escape = False
            continue
        if char == "\\" and in_string:
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return j + 1
    return -1


def extract_json_objects(text: str) -> List[CandidateObject]:
    """
    Find every complete, balanced top-level ``{...}`` span in ``text``.

    Scanning stops at the first object that is still open at the end of the
    text; it is left for a later call once more text has arrived.
    """
    results: List[CandidateObject] = []
    i = 0
    while i < len(text):
        start = text.find("{", i)
        if start == -1:
            break
        end = _find_object_end(text, start)
        if end == -1:
            break
        results.append(CandidateObject(text=text[start:end], end=end))
        i = end
    return results


def extract(full_text: str, processed_length: int = 0) -> ExtractResult:
    if processed_length < 0 or processed_length > len(full_text):
        raise ValueError(f"processed_length out of range: {processed_length} (text length {len(full_text)})")
    objects = extract_json_objects(full_text[processed_length:])
    consumed = objects[-1].end if objects else 0
    return ExtractResult(objects=objects, processed_length=processed_length + consumed)


def has_incomplete_block(text: str) -> bool:
    return text.rfind("{") > text.rfind("}")


@dataclass
class StreamBuffer:
    """Accumulated text of one stream plus the cursor up to which it has been extracted."""

    text: str = ""
    processed_length: int = 0
    extracted: int = field(default=0, repr=False)

    def append(self, delta: str) -> None:
        self.text += delta

    def drain(self) -> List[CandidateObject]:
        result = extract(self.text, self.processed_length)
        self.processed_length = result.processed_length
        self.extracted += len(result.objects)
        return result.objects

    def feed(self, delta: str) -> List[CandidateObject]:
        self.append(delta)
        return self.drain()

    @property
    def remaining(self) -> str:
        return self.text[self.processed_length :]


__all__ = [
    "CandidateObject",
    "ExtractResult",
    "StreamBuffer",
    "extract",
    "extract_json_objects",
    "has_incomplete_block",
]
