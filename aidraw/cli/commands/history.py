from __future__ import annotations

import time
from typing import Any

from ...config.loaders import AIConfig, history_path
from ...history.sessions import SessionStore


def history_list_cmd(*, args: Any, config: AIConfig) -> int:
    _ = config
    store = SessionStore(history_path(getattr(args, "environ", None)))
    if not store.sessions:
        print("no chat sessions")
        return 0
    for session in store.sessions:
        marker = "*" if session.id == store.current_session_id else " "
        stamp = time.strftime("%Y-%m-%d %H:%M", time.localtime(session.updated_at / 1000))
        print(f"{marker} {session.id}  {stamp}  {len(session.messages):3d} msgs  {session.title}")
    return 0


def history_clear_cmd(*, args: Any, config: AIConfig) -> int:
    _ = config
    SessionStore(history_path(getattr(args, "environ", None))).clear()
    print("cleared chat history")
    return 0
