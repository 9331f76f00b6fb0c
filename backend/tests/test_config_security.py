"""
Security config guard and backend selection tests.

Validates that production/staging environments fail fast on the in-memory
store, on in-memory sessions or on DSNs that disable TLS, while development
stays permissive.
"""
from __future__ import annotations

import pytest

from backend.identity_access.stores import SessionStore
from backend.identity_access.stores_db import DBSessionStore
from backend.usercontext import config as uc_config
from backend.usercontext.repo_db import DBTransactionRunner
from backend.usercontext.repo_memory import MemoryTransactionRunner
from backend.web import config as cfg


def test_dev_allows_memory_backend(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "dev")
    cfg.ensure_secure_config_on_startup()


def test_prod_refuses_memory_backend(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "prod")
    with pytest.raises(SystemExit):
        cfg.ensure_secure_config_on_startup()


def test_prod_refuses_sslmode_disable(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql://app:pw@db:5432/app?sslmode=disable")
    with pytest.raises(SystemExit):
        cfg.ensure_secure_config_on_startup()


def test_prod_accepts_tls_dsn(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("USERCONTEXT_DATABASE_URL", "postgresql://app:pw@db:5432/app?sslmode=require")
    monkeypatch.setenv("SESSIONS_BACKEND", "db")
    cfg.ensure_secure_config_on_startup()


def test_prod_refuses_invalid_backend_name(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("USERCONTEXT_BACKEND", "sqlite")
    with pytest.raises(SystemExit):
        cfg.ensure_secure_config_on_startup()


def test_backend_defaults_follow_dsn(monkeypatch: pytest.MonkeyPatch):
    assert uc_config.get_repo_backend() == "memory"
    monkeypatch.setenv("DATABASE_URL", "postgresql://app@db/app")
    assert uc_config.get_repo_backend() == "db"
    monkeypatch.setenv("USERCONTEXT_BACKEND", "memory")
    assert uc_config.get_repo_backend() == "memory"


def test_build_service_memory(monkeypatch: pytest.MonkeyPatch):
    service = uc_config.build_service()
    assert isinstance(service.profiles._tx, MemoryTransactionRunner)


def test_build_service_db_without_dsn_fails(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("USERCONTEXT_BACKEND", "db")
    with pytest.raises(RuntimeError):
        uc_config.build_service()


def test_build_service_db(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("USERCONTEXT_DATABASE_URL", "postgresql://app@db.invalid/app")
    service = uc_config.build_service()
    # No connection is opened until the first query.
    assert isinstance(service.profiles._tx, DBTransactionRunner)


@pytest.mark.parametrize("sessions", [None, "memory", "redis"])
def test_prod_refuses_non_db_sessions(monkeypatch: pytest.MonkeyPatch, sessions):
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("USERCONTEXT_DATABASE_URL", "postgresql://app:pw@db:5432/app?sslmode=require")
    if sessions is not None:
        monkeypatch.setenv("SESSIONS_BACKEND", sessions)
    with pytest.raises(SystemExit):
        cfg.ensure_secure_config_on_startup()


def test_session_store_selection(monkeypatch: pytest.MonkeyPatch):
    assert isinstance(cfg.build_session_store(), SessionStore)
    monkeypatch.setenv("SESSIONS_BACKEND", "db")
    monkeypatch.setenv("DATABASE_URL", "postgresql://app@db.invalid/app")
    assert isinstance(cfg.build_session_store(), DBSessionStore)
    monkeypatch.setenv("SESSIONS_BACKEND", "cookie")
    with pytest.raises(ValueError):
        cfg.get_sessions_backend()
