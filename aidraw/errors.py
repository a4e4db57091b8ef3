from __future__ import annotations

from typing import Optional, Sequence


class AIDrawError(Exception):
    pass


class TransportError(AIDrawError):
    """Fatal failure of the chat transport: a non-success status or a broken read."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ConfigInvalid(AIDrawError):
    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__("missing AI configuration: " + ", ".join(self.missing))


__all__ = ["AIDrawError", "ConfigInvalid", "TransportError"]
