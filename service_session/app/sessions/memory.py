"""
In-memory session store.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from shared.errors import SessionStoreError
from ..models import Session
from .redis_store import DEFAULT_SESSION_TTL, generate_session_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemorySessionStore:
    """Dictionary-backed store that mimics the Redis store's TTL behaviour.

    Operations named in ``failing_operations`` raise ``SessionStoreError`` to
    stand in for a broken connection.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        *,
        clock: Callable[[], datetime] = _utcnow,
        failing_operations: Optional[Iterable[str]] = None,
    ):
        self.ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()
        self._sessions: Dict[str, Tuple[Session, datetime]] = {}
        self._subjects: Dict[str, Tuple[str, datetime]] = {}
        self.failing_operations: Set[str] = set(failing_operations or ())
        self.update_calls = 0
        self.refresh_calls = 0

    async def create(self, session: Session) -> None:
        self._maybe_fail("create")
        async with self._lock:
            if not session.session_id:
                session.session_id = generate_session_id()
            now = self._clock()
            session.created_at = now
            session.updated_at = now
            deadline = now + self.ttl
            self._sessions[session.session_id] = (replace(session), deadline)
            self._subjects[session.subject] = (session.session_id, deadline)

    async def get(self, session_id: str) -> Optional[Session]:
        self._maybe_fail("get")
        async with self._lock:
            entry = self._live_session(session_id)
            return replace(entry[0]) if entry else None

    async def get_by_subject(self, subject: str) -> Optional[Session]:
        self._maybe_fail("get_by_subject")
        async with self._lock:
            pointer = self._live_pointer(subject)
            if pointer is None:
                return None
            entry = self._live_session(pointer[0])
            return replace(entry[0]) if entry else None

    async def update(self, session: Session) -> None:
        self._maybe_fail("update")
        async with self._lock:
            self.update_calls += 1
            now = self._clock()
            session.updated_at = now
            entry = self._live_session(session.session_id)
            if entry is None:
                return
            self._sessions[session.session_id] = (replace(session), entry[1])

    async def delete(self, session_id: str) -> None:
        self._maybe_fail("delete")
        async with self._lock:
            entry = self._live_session(session_id)
            if entry is None:
                return
            del self._sessions[session_id]
            subject = entry[0].subject
            pointer = self._subjects.get(subject)
            if pointer and pointer[0] == session_id:
                del self._subjects[subject]

    async def refresh(self, session_id: str) -> None:
        self._maybe_fail("refresh")
        async with self._lock:
            self.refresh_calls += 1
            entry = self._live_session(session_id)
            if entry is None:
                return
            deadline = self._clock() + self.ttl
            self._sessions[session_id] = (entry[0], deadline)
            pointer = self._subjects.get(entry[0].subject)
            if pointer and pointer[0] == session_id:
                self._subjects[entry[0].subject] = (session_id, deadline)

    async def close(self) -> None:
        return None

    def peek(self, session_id: str) -> Optional[Session]:
        """Synchronous read for assertions, ignoring store expiry."""
        entry = self._sessions.get(session_id)
        return replace(entry[0]) if entry else None

    def store_deadline(self, session_id: str) -> Optional[datetime]:
        entry = self._sessions.get(session_id)
        return entry[1] if entry else None

    def _live_session(self, session_id: str) -> Optional[Tuple[Session, datetime]]:
        entry = self._sessions.get(session_id)
        if entry and self._clock() >= entry[1]:
            del self._sessions[session_id]
            return None
        return entry

    def _live_pointer(self, subject: str) -> Optional[Tuple[str, datetime]]:
        pointer = self._subjects.get(subject)
        if pointer and self._clock() >= pointer[1]:
            del self._subjects[subject]
            return None
        return pointer

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing_operations:
            raise SessionStoreError(f"simulated {operation} failure")
