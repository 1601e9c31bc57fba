"""Presence heartbeat loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Any

from pydantic import BaseModel

from vibesync.api import ApiClient
from vibesync.constants import HEARTBEAT_INTERVAL_SECONDS, HEARTBEAT_SOURCE, PresenceState
from vibesync.database.session_store import BaseSessionJournal
from vibesync.datetime_utils import now_iso
from vibesync.exceptions import NotInitializedError
from vibesync.identity import ConfigStore
from vibesync.presence.git import detect_git_context
from vibesync.sync import SyncEngine

logger = logging.getLogger(__name__)


class HeartbeatResult(BaseModel):
    """Outcome of a one-shot heartbeat."""

    success: bool
    handle: str
    registered: bool
    legacy: bool = False
    session_id: str | None = None
    error: str | None = None


class PresenceLoop:
    """Publishes liveness for this process and drives the pending sweep.

    A single asyncio task alternates between a heartbeat (followed by a
    pending-message sweep) and a wait on the stop event bounded by the
    heartbeat interval. Stopping cancels the task, including any request
    it is waiting on.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        api: ApiClient,
        engine: SyncEngine,
        journal: BaseSessionJournal,
        interval: float = HEARTBEAT_INTERVAL_SECONDS,
        source: str = HEARTBEAT_SOURCE,
    ):
        """
        Initialize the loop.

        Args:
            config_store: Identity, token and session id
            api: Remote API client
            engine: Sync engine whose pending sweep runs on every tick
            journal: Session journal opened on first tick and closed on stop
            interval: Seconds between heartbeats
            source: Surface reported in each heartbeat
        """
        self._config_store = config_store
        self._api = api
        self._engine = engine
        self._journal = journal
        self.interval = interval
        self.source = source

        self.state = PresenceState.IDLE
        self.legacy = False
        self.last_heartbeat_at: str | None = None
        self._registered = False
        self._journal_session_id: str | None = None
        self._context: dict[str, Any] | None = None
        self._register_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_context(self, context: dict[str, Any] | None) -> None:
        """Extra presence context (mood, file, note) sent with later heartbeats."""
        self._context = context

    async def start(self) -> None:
        """Start the loop. A no-op when it is already running.

        Raises:
            NotInitializedError: no handle is configured
        """
        if not self._config_store.is_initialized():
            raise NotInitializedError("Cannot start presence without a handle")
        if self.is_running:
            logger.debug("Presence loop already running")
            return

        self._stop_event = asyncio.Event()
        self.state = PresenceState.REGISTERING
        self._task = asyncio.create_task(self._run(), name="vibesync-presence")
        logger.info("Presence loop started (interval=%.0fs)", self.interval)

    async def stop(self) -> None:
        """Stop heartbeats, close the journal session and drop per-process state."""
        self._stop_event.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._journal_session_id:
            self._journal.end_session(self._journal_session_id)
            self._journal_session_id = None

        self._config_store.clear_session()
        self._registered = False
        self.state = PresenceState.STOPPED
        logger.info("Presence loop stopped")

    async def force_heartbeat(self) -> HeartbeatResult:
        """Register if needed, then send exactly one heartbeat.

        Raises:
            NotInitializedError: no handle is configured
        """
        handle = self._config_store.get_handle()
        if not handle:
            raise NotInitializedError("Cannot send a heartbeat without a handle")
        if not self._registered:
            await self._register(handle)
        return await self._beat(handle)

    # --- Loop internals ---

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._tick()
            except Exception as e:
                logger.exception("Presence tick failed: %s", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass

    async def _tick(self) -> None:
        handle = self._config_store.get_handle()
        if not handle:
            logger.warning("Presence tick skipped: no handle")
            return

        if not self._registered:
            await self._register(handle)
        if self._journal_session_id is None:
            await self._start_journal_session(handle)

        await self._beat(handle)

        try:
            await self._engine.retry_pending(handle)
        except Exception as e:
            logger.exception("Pending sweep failed: %s", e)

    async def _register(self, handle: str) -> bool:
        async with self._register_lock:
            if self._registered:
                return True

            result = await self._api.register_session(handle)
            if not result.get("success"):
                logger.warning(
                    "Presence registration for @%s failed: %s", handle, result.get("error")
                )
                return False

            token = result.get("token")
            if token:
                try:
                    self._config_store.set_auth_token(token, session_id=result.get("sessionId"))
                except OSError as e:
                    logger.error("Failed to persist auth token: %s", e)
                self.legacy = False
            else:
                logger.info("Registered @%s without a token (legacy mode)", handle)
                self.legacy = True

            self._registered = True
            self.state = PresenceState.BEATING
            return True

    async def _start_journal_session(self, handle: str) -> None:
        session_id = self._config_store.get_session_id()
        repo, branch = await detect_git_context()
        self._journal.start_session(
            session_id, handle, repo=repo, branch=branch, machine_id=socket.gethostname()
        )
        self._journal_session_id = session_id

    async def _beat(self, handle: str) -> HeartbeatResult:
        result = await self._api.heartbeat(
            handle,
            self._config_store.get_one_liner() or "",
            context=self._context,
            source=self.source,
        )
        success = result.get("success") is not False
        if success:
            self.last_heartbeat_at = now_iso()
        else:
            logger.warning("Heartbeat for @%s failed: %s", handle, result.get("error"))
        return HeartbeatResult(
            success=success,
            handle=handle,
            registered=self._registered,
            legacy=self.legacy,
            session_id=self._config_store.get_session_id(),
            error=None if success else str(result.get("error")),
        )
