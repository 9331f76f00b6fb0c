"""
Database-backed SessionStore for deployments (Postgres).

Why: The in-memory store only lives as long as the process and knows nothing
about logins performed elsewhere. In a deployment the login service writes a
row into ``auth.sessions`` and sets the opaque id as cookie; this API only
looks the id up. ``create`` and ``delete`` exist for that service and for
operations scripts.

Note: Enabled via ``SESSIONS_BACKEND=db``; tests keep the in-memory store.
"""
from __future__ import annotations

import psycopg

from backend.identity_access.stores import SessionRecord
from backend.usercontext.config import get_database_url


class DBSessionStore:
    """Postgres-backed session store over ``auth.sessions``."""

    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn or get_database_url()
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")

    def create(self, *, account_id: int, ttl_seconds: int = 3600) -> SessionRecord:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "insert into auth.sessions (session_id, account_id, expires_at) "
                    "values (encode(gen_random_bytes(32), 'hex'), %s, now() + make_interval(secs => %s)) "
                    "returning session_id, account_id, extract(epoch from expires_at)::bigint",
                    (int(account_id), int(ttl_seconds)),
                )
                row = cur.fetchone()
        return SessionRecord(session_id=str(row[0]), account_id=int(row[1]), expires_at=float(row[2]))

    def get(self, session_id: str) -> SessionRecord | None:
        if not session_id:
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select session_id, account_id, extract(epoch from expires_at)::bigint "
                    "from auth.sessions where session_id = %s and expires_at > now()",
                    (session_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return SessionRecord(session_id=str(row[0]), account_id=int(row[1]), expires_at=float(row[2]))

    def delete(self, session_id: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from auth.sessions where session_id = %s", (session_id,))
