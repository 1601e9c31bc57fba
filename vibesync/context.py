"""Per-process wiring of the config store, database, API client and engines."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from vibesync.api import ApiClient
from vibesync.config import Config
from vibesync.database import Database, NullDatabase, open_database
from vibesync.identity import ConfigStore
from vibesync.presence import PresenceLoop
from vibesync.sync import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a tool call needs, built once at process start."""

    config: Config
    config_store: ConfigStore
    db: Database | NullDatabase
    api: ApiClient
    engine: SyncEngine
    presence: PresenceLoop

    @classmethod
    def create(
        cls, config: Config, transport: httpx.AsyncBaseTransport | None = None
    ) -> AppContext:
        """
        Build the context from process configuration.

        Args:
            config: Process configuration
            transport: Optional httpx transport for the API client

        Returns:
            A ready AppContext; the database may be a NullDatabase when the
            local file cannot be opened
        """
        config_store = ConfigStore(config.config_path, config.legacy_config_path)
        db = open_database(config.db_path)
        api = ApiClient(
            config_store, config.api_url, timeout=config.request_timeout, transport=transport
        )
        engine = SyncEngine(
            db.messages,
            api,
            config_store,
            journal=db.sessions,
            max_retries=config.max_send_retries,
        )
        presence = PresenceLoop(
            config_store,
            api,
            engine,
            db.sessions,
            interval=config.heartbeat_interval,
            source=config.source,
        )
        if db.is_null:
            logger.warning("Running without a local cache; messages will not persist offline")
        return cls(
            config=config,
            config_store=config_store,
            db=db,
            api=api,
            engine=engine,
            presence=presence,
        )

    async def aclose(self) -> None:
        """Stop presence and release the HTTP client and database."""
        await self.presence.stop()
        await self.api.aclose()
        self.db.close()
