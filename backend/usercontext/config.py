"""
Configuration for the user context service.

Intent:
    Decide from the environment which repositories back the service and build
    a ready-to-use ``UserContextService``. Development without a database falls
    back to the in-memory store; production must use Postgres (see
    ``backend.web.config``).

Env:
    USERCONTEXT_BACKEND – "db" or "memory"; defaults to "db" when a DSN is set.
    USERCONTEXT_DATABASE_URL / DATABASE_URL – Postgres DSN for the db backend.
    APP_ENV – deployment environment ("dev" by default).
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from backend.storage.avatars import LocalAvatarStorage
from backend.storage.config import get_avatar_storage_root, get_avatar_url_prefix

from .repo_db import DBSession, DBTransactionRunner, db_repositories
from .repo_memory import MemoryStore, MemoryTransactionRunner, memory_repositories
from .service import UserContextService

logger = logging.getLogger(__name__)

BACKEND_DB = "db"
BACKEND_MEMORY = "memory"


def get_app_env() -> str:
    return (os.getenv("APP_ENV") or "dev").strip().lower()


def is_prod_like(env: Optional[str] = None) -> bool:
    return (env if env is not None else get_app_env()) in {"prod", "production", "stage", "staging"}


def get_database_url() -> str:
    return (os.getenv("USERCONTEXT_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()


def get_repo_backend() -> str:
    """Return the configured repository backend ("db" or "memory")."""
    raw = (os.getenv("USERCONTEXT_BACKEND") or "").strip().lower()
    if raw:
        if raw not in (BACKEND_DB, BACKEND_MEMORY):
            raise ValueError(f"USERCONTEXT_BACKEND must be 'db' or 'memory' (got {raw!r})")
        return raw
    return BACKEND_DB if get_database_url() else BACKEND_MEMORY


def build_service(store: Optional[MemoryStore] = None) -> UserContextService:
    """Build the service for the configured backend.

    ``store`` seeds the in-memory backend (tests, local demos) and is ignored
    for the db backend.
    """
    storage = LocalAvatarStorage(get_avatar_storage_root())
    prefix = get_avatar_url_prefix()
    backend = get_repo_backend()
    if backend == BACKEND_DB:
        dsn = get_database_url()
        if not dsn:
            raise RuntimeError("USERCONTEXT_BACKEND=db requires USERCONTEXT_DATABASE_URL or DATABASE_URL")
        logger.info("usercontext.config.backend backend=db")
        return UserContextService(
            db_repositories(DBSession(dsn)),
            DBTransactionRunner(dsn),
            storage=storage,
            avatar_url_prefix=prefix,
        )
    store = store or MemoryStore()
    logger.info("usercontext.config.backend backend=memory")
    return UserContextService(
        memory_repositories(store),
        MemoryTransactionRunner(store),
        storage=storage,
        avatar_url_prefix=prefix,
    )


__all__ = [
    "BACKEND_DB",
    "BACKEND_MEMORY",
    "build_service",
    "get_app_env",
    "get_database_url",
    "get_repo_backend",
    "is_prod_like",
]
