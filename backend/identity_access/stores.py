"""
In-memory session store for development and tests.

Why: The cookie carries only an opaque session id; the account the session
belongs to stays server-side. For production, replace with a DB-backed store.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional
import secrets
import time


@dataclass
class SessionRecord:
    session_id: str
    account_id: int
    expires_at: float

    def expired(self, now: float) -> bool:
        return self.expires_at <= now


class SessionStore:
    """Maps opaque session ids to account ids until they expire."""

    def __init__(self, *, clock: Callable[[], float] = time.time, default_ttl_seconds: int = 3600):
        self._clock = clock
        self._default_ttl = default_ttl_seconds
        self._sessions: Dict[str, SessionRecord] = {}

    def create(self, *, account_id: int, ttl_seconds: Optional[int] = None) -> SessionRecord:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        record = SessionRecord(
            session_id=secrets.token_urlsafe(32),
            account_id=int(account_id),
            expires_at=self._clock() + ttl,
        )
        self._sessions[record.session_id] = record
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        record = self._sessions.get(session_id or "")
        if record is None:
            return None
        if record.expired(self._clock()):
            del self._sessions[session_id]
            return None
        return record

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
