"""
Startup security checks for the user context API.

Why: Profiles and group rosters are personal data; a deployment must not run on
an unencrypted database link or on the throw-away in-memory store.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

from backend.identity_access.stores import SessionStore
from backend.usercontext.config import (
    BACKEND_MEMORY,
    get_app_env,
    get_database_url,
    get_repo_backend,
    is_prod_like,
)


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like APP_ENV only):
    - The repository backend must not be the in-memory store.
    - The DSN must not explicitly disable TLS.
    - Sessions must come from the database (SESSIONS_BACKEND=db).
    """
    env = get_app_env()
    if not is_prod_like(env):
        return  # dev/test remain permissive

    try:
        backend = get_repo_backend()
    except ValueError as exc:
        raise SystemExit(f"Refusing to start: {exc}")
    if backend == BACKEND_MEMORY:
        raise SystemExit(
            "Refusing to start: the in-memory user context store is not allowed in production. "
            "Set USERCONTEXT_DATABASE_URL or DATABASE_URL."
        )

    dsn = get_database_url()
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: database DSN contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    try:
        sessions = get_sessions_backend()
    except ValueError as exc:
        raise SystemExit(f"Refusing to start: {exc}")
    if sessions != SESSIONS_DB:
        raise SystemExit(
            "Refusing to start: in-memory sessions are not allowed in production. Set SESSIONS_BACKEND=db."
        )


# --- Sessions -----------------------------------------------------------------

SESSIONS_DB = "db"
SESSIONS_MEMORY = "memory"


def get_sessions_backend() -> str:
    """Return the session store backend ("memory" or "db").

    Env:
        SESSIONS_BACKEND – defaults to "memory"; "db" reads sessions written by
        the login service from ``auth.sessions``.
    """
    value = (os.getenv("SESSIONS_BACKEND") or SESSIONS_MEMORY).strip().lower()
    if value not in (SESSIONS_DB, SESSIONS_MEMORY):
        raise ValueError(f"invalid SESSIONS_BACKEND: {value!r}")
    return value


def build_session_store():
    """Session store for the auth middleware, chosen by SESSIONS_BACKEND."""
    if get_sessions_backend() == SESSIONS_DB:
        from backend.identity_access.stores_db import DBSessionStore

        return DBSessionStore()
    return SessionStore()
