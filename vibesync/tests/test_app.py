"""Tests for process wiring and the standalone presence service."""

import asyncio
import signal

import pytest

from vibesync.app import VibeSync
from vibesync.context import AppContext
from vibesync.tests.conftest import TEST_HANDLE, TEST_PEER, wait_until


@pytest.fixture
def restore_signals():
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


class TestAppContext:
    async def test_create_wires_components(self, test_config, config_store, vibe_server):
        context = AppContext.create(test_config)
        try:
            assert not context.db.is_null
            assert context.config_store.get_handle() == TEST_HANDLE

            result = await context.engine.send_message(TEST_HANDLE, TEST_PEER, "wired")

            assert result.ok
            assert context.db.messages.get_message(result.local_id).status == "sent"
        finally:
            await context.aclose()

    async def test_unusable_database_falls_back_to_null(self, make_config, tmp_path, vibe_server):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")
        config = make_config(db_path=str(blocker / "sessions.db"))

        context = AppContext.create(config)
        try:
            assert context.db.is_null
            assert context.db.reason

            result = await context.engine.send_message("alice", TEST_PEER, "no cache")

            assert result.ok
            assert context.db.messages.get_thread("alice", TEST_PEER) == []
        finally:
            await context.aclose()


class TestVibeSync:
    async def test_runs_until_shutdown(
        self, test_config, config_store, vibe_server, restore_signals
    ):
        app = VibeSync(test_config)

        runner = asyncio.create_task(app.run())
        await wait_until(lambda: len(vibe_server.heartbeats) >= 2)
        app.request_shutdown()
        await asyncio.wait_for(runner, timeout=5.0)

        assert not app.context.presence.is_running
        assert vibe_server.registrations[0]["body"]["username"] == TEST_HANDLE

    async def test_signal_handler_requests_shutdown(
        self, test_config, config_store, vibe_server, restore_signals
    ):
        app = VibeSync(test_config)

        runner = asyncio.create_task(app.run())
        await wait_until(lambda: len(vibe_server.heartbeats) >= 1)
        app._signal_handler(signal.SIGTERM, None)
        await asyncio.wait_for(runner, timeout=5.0)

        assert runner.done()

    async def test_exits_without_handle(self, test_config, vibe_server):
        app = VibeSync(test_config)

        await asyncio.wait_for(app.run(), timeout=5.0)

        assert vibe_server.heartbeats == []
