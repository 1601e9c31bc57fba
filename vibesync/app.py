"""Standalone presence service: heartbeats and pending-message sweeps until signalled."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any

from vibesync.config import Config, setup_logging
from vibesync.context import AppContext

logger = logging.getLogger(__name__)


class VibeSync:
    """Runs the presence loop for the configured identity until shutdown."""

    def __init__(self, config: Config, context: AppContext | None = None):
        self.config = config
        self.context = context or AppContext.create(config)
        self._shutdown_event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, shutting down...", signum)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run(self) -> None:
        """Start presence and block until a shutdown is requested."""
        handle = self.context.config_store.get_handle()
        if not handle:
            logger.error("No handle configured in %s; nothing to do", self.config.config_path)
            await self.shutdown()
            return

        self._loop = asyncio.get_running_loop()
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        logger.info("Starting vibesync for @%s against %s", handle, self.config.api_url)
        try:
            await self.context.presence.start()
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Clean shutdown of resources."""
        logger.info("Shutting down vibesync...")
        await self.context.aclose()
        logger.info("Shutdown complete")


async def main() -> None:
    """Main entry point."""
    config = Config.load()
    setup_logging(config.log_level, config.log_file, config.log_max_bytes, config.log_backup_count)

    logger.info("Starting vibesync with config:")
    logger.info("  api_url: %s", config.api_url)
    logger.info("  db_path: %s", config.db_path)
    logger.info("  heartbeat_interval: %.0fs", config.heartbeat_interval)
    logger.info("  max_send_retries: %d", config.max_send_retries)

    app = VibeSync(config)
    await app.run()


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
