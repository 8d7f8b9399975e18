#!/usr/bin/env python3
"""
shutdownd - Server Shutdown Scheduler Service

Connects to NATS, loads the server_shutdown plugin with the
``server_shutdown`` section of the config file, and runs until
interrupted. Everything the scheduler does lives in the plugin; this
file only coordinates startup and shutdown.

Usage:
    shutdownd config.yaml
"""

import argparse
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import nats
from nats.aio.client import Client as NATS

from common.config import get_config
from plugins.server_shutdown import ServerShutdownPlugin


logger = logging.getLogger(__name__)


class ShutdownService:
    """
    Service orchestrator.

    Responsibilities:
    1. Connect to NATS
    2. Load and initialize the plugin
    3. Coordinate graceful shutdown
    """

    def __init__(
        self,
        config: Dict[str, Any],
        connect: Callable[..., Awaitable[NATS]] = nats.connect,
    ):
        self.config = config
        self._connect = connect
        self.nats: Optional[NATS] = None
        self.plugin: Optional[ServerShutdownPlugin] = None

    async def start(self) -> None:
        """Connect and load the plugin."""
        try:
            logger.info(f"Connecting to NATS: {self.config['nats_url']}")
            self.nats = await self._connect(
                servers=self.config['nats_url'],
                name="shutdownd",
            )

            self.plugin = ServerShutdownPlugin(
                self.nats,
                self.config.get('server_shutdown') or {},
            )
            await self.plugin.initialize()

            logger.info("shutdownd started")

        except Exception as e:
            logger.error(f"Failed to start shutdownd: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Unload the plugin and disconnect, in reverse order."""
        logger.info("Stopping shutdownd...")

        if self.plugin:
            await self.plugin.shutdown()
            self.plugin = None

        if self.nats:
            try:
                await self.nats.drain()
            except Exception as e:
                logger.error(f"Error during disconnect: {e}")
            finally:
                self.nats = None

        logger.info("shutdownd stopped")


async def main(config_file: Optional[str] = None) -> None:
    """Entry point"""
    config = get_config(config_file)
    service = ShutdownService(config)

    try:
        await service.start()
        # Run until interrupted
        await asyncio.Event().wait()
    finally:
        await service.stop()


def run() -> None:
    parser = argparse.ArgumentParser(description="Server shutdown scheduler")
    parser.add_argument('config', help="Path to a JSON or YAML config file")
    args = parser.parse_args()

    try:
        asyncio.run(main(args.config))
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")


if __name__ == "__main__":
    run()
