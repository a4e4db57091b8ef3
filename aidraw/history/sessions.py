from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

MAX_SESSIONS = 50
TITLE_MAX_CHARS = 30


def _new_id() -> str:
    return uuid.uuid4().hex


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ChatMessage:
    id: str
    role: str  # "user" | "assistant"
    content: str
    timestamp: int

    @classmethod
    def from_obj(cls, obj: Any) -> "ChatMessage":
        if not isinstance(obj, dict):
            raise ValueError("chat message must be an object")
        return cls(
            id=str(obj.get("id") or _new_id()),
            role=str(obj.get("role") or "user"),
            content=str(obj.get("content") or ""),
            timestamp=int(obj.get("timestamp") or 0),
        )


@dataclass
class ChatSession:
    id: str
    title: str
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_obj(cls, obj: Any) -> "ChatSession":
        if not isinstance(obj, dict):
            raise ValueError("chat session must be an object")
        return cls(
            id=str(obj.get("id") or _new_id()),
            title=str(obj.get("title") or ""),
            messages=[ChatMessage.from_obj(m) for m in (obj.get("messages") or [])],
            created_at=int(obj.get("created_at") or 0),
            updated_at=int(obj.get("updated_at") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SessionStore:
    """Chat sessions, most recent first, persisted as a JSON list."""

    def __init__(self, path: Optional[Path], *, clock: Callable[[], int] = _now_ms) -> None:
        self.path = path
        self.clock = clock
        self.sessions: List[ChatSession] = self._load()
        self.current_session_id: Optional[str] = self.sessions[0].id if self.sessions else None

    def _load(self) -> List[ChatSession]:
        if self.path is None or not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return [ChatSession.from_obj(obj) for obj in raw] if isinstance(raw, list) else []
        except (OSError, ValueError, TypeError) as e:
            logger.warning("ignoring unreadable chat history %s: %s", self.path, e)
            return []

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        trimmed = [s.to_dict() for s in self.sessions[:MAX_SESSIONS]]
        self.path.write_text(json.dumps(trimmed, ensure_ascii=False, indent=2), encoding="utf-8")

    def _find(self, session_id: str) -> Optional[ChatSession]:
        return next((s for s in self.sessions if s.id == session_id), None)

    @property
    def current_session(self) -> Optional[ChatSession]:
        if self.current_session_id is None:
            return None
        return self._find(self.current_session_id)

    def create_session(self, title: Optional[str] = None) -> str:
        now = self.clock()
        session = ChatSession(
            id=_new_id(),
            title=title or "New chat " + time.strftime("%b %d %H:%M", time.localtime(now / 1000)),
            created_at=now,
            updated_at=now,
        )
        self.sessions.insert(0, session)
        self.current_session_id = session.id
        self._save()
        return session.id

    def add_message(self, session_id: str, role: str, content: str) -> str:
        session = self._find(session_id)
        if session is None:
            raise KeyError(session_id)
        now = self.clock()
        message = ChatMessage(id=_new_id(), role=role, content=content, timestamp=now)
        if role == "user" and not session.messages:
            session.title = content[:TITLE_MAX_CHARS] + ("..." if len(content) > TITLE_MAX_CHARS else "")
        session.messages.append(message)
        session.updated_at = now
        self._save()
        return message.id

    def update_message(self, session_id: str, message_id: str, content: str) -> None:
        session = self._find(session_id)
        if session is None:
            return
        for message in session.messages:
            if message.id == message_id:
                message.content = content
        session.updated_at = self.clock()
        self._save()

    def delete_session(self, session_id: str) -> None:
        self.sessions = [s for s in self.sessions if s.id != session_id]
        if not self.sessions:
            self.current_session_id = None
        elif session_id == self.current_session_id:
            self.current_session_id = self.sessions[0].id
        self._save()

    def switch(self, session_id: str) -> None:
        if self._find(session_id) is None:
            raise KeyError(session_id)
        self.current_session_id = session_id

    def clear(self) -> None:
        self.sessions = []
        self.current_session_id = None
        self._save()


__all__ = ["ChatMessage", "ChatSession", "MAX_SESSIONS", "SessionStore"]
