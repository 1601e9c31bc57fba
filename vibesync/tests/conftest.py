"""Pytest fixtures for vibesync tests."""

import asyncio
from collections.abc import Callable
from typing import Any, cast

import pytest

from vibesync.api import ApiClient
from vibesync.config import Config
from vibesync.database import open_database
from vibesync.identity import ConfigStore
from vibesync.sync import SyncEngine
from vibesync.tests.mocks.vibe_server import MockVibeServer

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)

# Standard test identity
TEST_HANDLE = "alice"
TEST_PEER = "bob"

# Default config values for tests (fast heartbeats and short timeouts)
DEFAULT_TEST_CONFIG = {
    "log_level": "DEBUG",
    "request_timeout": 2.0,
    "heartbeat_interval": 0.05,
    "max_send_retries": 5,
    "source": "test",
}


async def wait_until(
    condition: Callable[[], bool],
    timeout: float = 10.0,
    interval: float = 0.05,
) -> None:
    """
    Poll a condition until it becomes true, or raise TimeoutError.

    Args:
        condition: Synchronous callable that returns True when ready.
        timeout: Maximum seconds to wait before raising TimeoutError.
        interval: Seconds between polls.
    """
    deadline = asyncio.get_event_loop().time() + timeout
    while asyncio.get_event_loop().time() < deadline:
        if condition():
            return
        await asyncio.sleep(interval)
    raise TimeoutError(f"Condition not met within {timeout}s")


@pytest.fixture
async def vibe_server():
    """Start a mock vibe backend and yield it."""
    server = MockVibeServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def test_db(tmp_path) -> str:
    """Temporary database path inside a fresh data directory."""
    return str(tmp_path / ".vibecodings" / "sessions.db")


@pytest.fixture
def make_config(vibe_server, tmp_path, test_db) -> Callable[..., Config]:
    """
    Factory fixture for creating test configs with custom overrides.

    Usage:
        config = make_config()  # defaults
        config = make_config(max_send_retries=1)  # with override
    """

    def _make_config(**overrides: Any) -> Config:
        config_kwargs: dict[str, Any] = {
            **DEFAULT_TEST_CONFIG,
            "api_url": vibe_server.url,
            "data_dir": str(tmp_path / ".vibecodings"),
            "legacy_dir": str(tmp_path / ".vibe"),
            "db_path": test_db,
            **overrides,
        }
        return Config(**cast(Any, config_kwargs))

    return _make_config


@pytest.fixture
def test_config(make_config) -> Config:
    """Create a test Config pointing to the mock server."""
    return make_config()


@pytest.fixture
def config_store(test_config) -> ConfigStore:
    """Config store with TEST_HANDLE already saved."""
    store = ConfigStore(test_config.config_path, test_config.legacy_config_path)
    store.save_identity(TEST_HANDLE, "testing vibesync")
    return store


@pytest.fixture
def db(test_db):
    """Open the local database (tables created, migrations run)."""
    database = open_database(test_db)
    assert not database.is_null
    yield database
    database.close()


@pytest.fixture
async def api(config_store, test_config):
    """API client pointed at the mock server."""
    client = ApiClient(
        config_store, test_config.api_url, timeout=test_config.request_timeout
    )
    yield client
    await client.aclose()


@pytest.fixture
def engine(db, api, config_store, test_config) -> SyncEngine:
    """Sync engine wired to the test database and mock server."""
    return SyncEngine(
        db.messages,
        api,
        config_store,
        journal=db.sessions,
        max_retries=test_config.max_send_retries,
    )
