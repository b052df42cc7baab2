"""Trinetra main daemon."""

import asyncio
import signal
import sys
from typing import Optional

import structlog

from trinetra.api_server import APIServer
from trinetra.config import config  # config loads .env at import time
from trinetra.core import tmux_bridge
from trinetra.core.db import Db
from trinetra.core.errors import ExternalToolUnavailable, TransientToolFailure
from trinetra.core.session_lifecycle import SessionManager
from trinetra.core.subscriptions import SubscriptionRegistry
from trinetra.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class TrinetraDaemon:
    """Wires the registry, lifecycle manager, subscription engine and API server."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db = Db(db_path or config.database_path)
        self.session_manager = SessionManager(self.db)
        self.subscriptions = SubscriptionRegistry(self.db)
        self.api_server = APIServer(self.db, self.session_manager, self.subscriptions)
        self.shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Check tmux, open the database and start serving.

        Raises:
            ExternalToolUnavailable: If tmux cannot be run or does not answer
        """
        try:
            version = await tmux_bridge.tmux_version()
        except TransientToolFailure as e:
            raise ExternalToolUnavailable("tmux did not answer the version check", details=e.details or e.message) from e
        logger.info("Using %s", version)

        config.data_dir.mkdir(parents=True, exist_ok=True)
        config.logs_dir.mkdir(parents=True, exist_ok=True)

        await self.db.initialize()
        logger.info("Database initialized at %s", self.db.db_path)

        await self.api_server.start()
        logger.info("Trinetra daemon started")

    async def stop(self) -> None:
        """Stop serving, tear down subscriptions and close the database."""
        logger.info("Stopping Trinetra daemon...")
        await self.api_server.stop()
        await self.db.close()
        logger.info("Trinetra daemon stopped")


async def _run() -> None:
    setup_logging()
    daemon = TrinetraDaemon()

    loop = asyncio.get_running_loop()

    def signal_handler(signum: int) -> None:
        """Handle termination signals."""
        logger.info("Received %s signal...", signal.Signals(signum).name)
        daemon.shutdown_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        try:
            await daemon.start()
        except ExternalToolUnavailable as e:
            logger.error("tmux is required but not available: %s", e.details or e.message)
            sys.exit(1)

        await daemon.shutdown_event.wait()
    finally:
        try:
            await daemon.stop()
        except Exception as e:  # noqa: BLE001 - shutdown must not mask the original exit
            logger.error("Error during daemon stop: %s", e)


def main() -> None:
    """Main entry point (`trinetra-server`)."""
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
