from __future__ import annotations

from pathlib import Path

import pytest

from remember.db import init_db
from remember.persistent_login import PersistentLoginConfig, PersistentLoginManager
from remember.settings import Settings
from remember.store import InMemoryTokenStore, SqliteTokenStore

DAY = 24 * 60 * 60
T0 = 1_700_000_000


class FakeClock:
    def __init__(self, t: int = T0) -> None:
        self.t = t

    def __call__(self) -> int:
        return self.t

    def advance(self, seconds: int) -> None:
        self.t += seconds


class CountingIds:
    """Predictable ids: "1", "2", "3", ..."""

    def __init__(self, start: int = 1) -> None:
        self.n = start - 1

    def __call__(self) -> str:
        self.n += 1
        return str(self.n)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ids() -> CountingIds:
    return CountingIds()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "remember.db"
    init_db(path)
    return path


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "memory":
        return InMemoryTokenStore()
    path = tmp_path / "store.db"
    init_db(path, dev_local_users=False)
    return SqliteTokenStore(path)


@pytest.fixture
def manager(store, clock: FakeClock, ids: CountingIds) -> PersistentLoginManager:
    config = PersistentLoginConfig(timeout_seconds=30 * DAY, new_id=ids, clock=clock)
    return PersistentLoginManager(store, config)


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        DB_PATH=str(tmp_path / "app.db"),
        COOKIE_SECURE=False,
        DEV_MODE=True,
        BCRYPT_ROUNDS=4,
        REMEMBER_TIMEOUT_DAYS=30,
    )
