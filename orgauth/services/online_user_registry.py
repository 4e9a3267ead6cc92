from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from orgauth.domain.models import now_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnlineSession:
    username: str
    session_id: str
    login_time: datetime


class OnlineUserRegistry:
    """Users currently signed in to this process.

    Owned by the application lifespan; ``close`` drops every entry and makes
    further connects a no-op.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, OnlineSession] = {}
        self._closed = False

    def connect(self, username: str, session_id: str) -> OnlineSession | None:
        with self._lock:
            if self._closed:
                return None
            entry = OnlineSession(username=username, session_id=session_id, login_time=now_utc())
            self._sessions[username] = entry
        logger.info("user %s online", username)
        return entry

    def disconnect(self, username: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(username, None) is not None
        if removed:
            logger.info("user %s offline", username)
        return removed

    def list(self) -> list[OnlineSession]:
        with self._lock:
            return sorted(self._sessions.values(), key=lambda item: item.login_time)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def is_online(self, username: str) -> bool:
        with self._lock:
            return username in self._sessions

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._sessions.clear()
