"""
In-process locks keyed by (user_id, session_id), serializing message writes per conversation.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple

SessionKey = Tuple[str, str]


class SessionLockRegistry:
    """Hands out one lock per session and forgets it once no writer holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[SessionKey, threading.Lock] = {}
        self._users: Dict[SessionKey, int] = {}

    @contextmanager
    def hold(self, user_id: str, session_id: str) -> Iterator[None]:
        key = (user_id, session_id)
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def active_sessions(self) -> int:
        with self._guard:
            return len(self._locks)
