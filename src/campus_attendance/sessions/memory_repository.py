from __future__ import annotations

import threading
from typing import Dict, Optional, Sequence

from ..core.exceptions import NotFoundError, ValidationError
from .model import AttendanceSession
from .repository import SessionMutator, SessionQuery, SessionRepository


class InMemorySessionRepository(SessionRepository):
    """Process-local store with one lock per session id.

    Stored sessions are immutable, so readers always see a consistent
    snapshot without locking; only writers of the same session serialize.
    """

    def __init__(self):
        self._sessions: Dict[str, AttendanceSession] = {}
        self._locks: Dict[str, threading.Lock] = {}
        # Guards the two dicts above, never held while a mutator runs.
        self._registry_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> Optional[threading.Lock]:
        with self._registry_lock:
            return self._locks.get(session_id)

    def add(self, session: AttendanceSession) -> None:
        with self._registry_lock:
            if session.session_id in self._sessions:
                raise ValidationError(f"Session {session.session_id} already exists")
            self._locks[session.session_id] = threading.Lock()
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[AttendanceSession]:
        return self._sessions.get(session_id)

    def update(self, session_id: str, mutate: SessionMutator) -> AttendanceSession:
        lock = self._lock_for(session_id)
        if lock is None:
            raise NotFoundError(f"Attendance session {session_id} not found")

        with lock:
            current = self._sessions[session_id]
            updated = mutate(current)
            if updated is None:
                return current
            if updated.session_id != session_id:
                raise ValidationError("Session id is immutable")
            self._sessions[session_id] = updated
            return updated

    def list_sessions(self, query: SessionQuery) -> Sequence[AttendanceSession]:
        with self._registry_lock:
            snapshot = list(self._sessions.values())
        items = [s for s in snapshot if query.matches(s)]
        items.sort(key=lambda s: s.created_at, reverse=True)
        if query.limit is not None:
            items = items[: int(query.limit)]
        return items
