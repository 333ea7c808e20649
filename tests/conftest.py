import pytest
import pytest_asyncio

from hubba.database import database
from hubba.utils.config import get_settings


@pytest.fixture(autouse=True)
def _settings(monkeypatch):
    """Fresh settings per test, with the defaults the tests assume."""
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("ENVIRONMENT", "test")
    for name in (
        "TURN_TIMEOUT_SECONDS",
        "RECONNECT_WINDOW_SECONDS",
        "VOTE_WINDOW_SECONDS",
        "MAX_PROCESSED_EVENTS",
        "BATTLE_MAX_PROCESSED_EVENTS",
        "MAX_PLAYERS_CAP",
        "ADMIN_USER_IDS",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db(tmp_path):
    """A file-backed SQLite database per test."""
    await database.init_database(f"sqlite:///{tmp_path / 'hubba-test.db'}")
    yield
    await database.close_database()
