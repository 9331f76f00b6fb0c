"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure `backend.*` is importable when pytest runs without an editable install
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend.tests.utils.school import NOW, FixedClock, seed_school  # noqa: E402
from backend.tests.utils.storage_fixtures import RecordingStorage  # noqa: E402
from backend.usercontext.repo_memory import MemoryStore, MemoryTransactionRunner, memory_repositories  # noqa: E402
from backend.usercontext.service import UserContextService  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Keep env-driven behavior deterministic across tests.

    Why:
        The web app builds its service lazily from the environment. A developer
        shell with DATABASE_URL or APP_ENV=prod would otherwise leak into
        unit tests that expect the in-memory backend.
    """
    for var in (
        "APP_ENV",
        "APP_TRUST_PROXY",
        "USERCONTEXT_BACKEND",
        "SESSIONS_BACKEND",
        "AVATAR_MAX_UPLOAD_BYTES",
        "USERCONTEXT_DATABASE_URL",
        "DATABASE_URL",
        "AVATAR_URL_PREFIX",
        "AVATAR_STORAGE_ROOT",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore()
    seed_school(store)
    return store


@pytest.fixture
def tx(store: MemoryStore) -> MemoryTransactionRunner:
    return MemoryTransactionRunner(store)


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def service(store: MemoryStore, tx: MemoryTransactionRunner, storage: RecordingStorage, clock: FixedClock) -> UserContextService:
    return UserContextService(memory_repositories(store), tx, storage=storage, clock=clock)


@pytest.fixture
def fresh_env_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the test inside an empty working directory (avatar root resolves below it)."""
    monkeypatch.chdir(tmp_path)
    os.makedirs(tmp_path / "public" / "uploads" / "avatars", exist_ok=True)
    return tmp_path
