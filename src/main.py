"""
Main entry point for the Package Manager.

This module wires the package store, registry client and reconciler together
and starts the controller.
"""

import asyncio
import logging
import signal
from typing import Optional

from config import get_config
from controller import Controller
from imageconfig import DatabaseConfigStore
from reconciler import Reconciler
from revisioner import RegistryRevisioner
from store import PackageStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that owns the store and the controller."""

    def __init__(self):
        self.config = get_config()
        self.store: Optional[PackageStore] = None
        self.controller: Optional[Controller] = None
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Package Manager")

        db_config = self.config.database
        self.store = PackageStore(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await self.store.connect()
        await self.store.initialize_schema()
        logger.info("Database initialized")

        registry_config = self.config.registry
        revisioner = RegistryRevisioner(
            default_registry=registry_config.default_registry,
            timeout=registry_config.timeout,
            credentials=registry_config.credentials,
            insecure_registries=registry_config.insecure_registries,
        )

        ctrl_config = self.config.controller
        reconciler = Reconciler(
            store=self.store,
            revisioner=revisioner,
            config_store=DatabaseConfigStore(self.store),
            pull_interval=ctrl_config.pull_interval,
            unpack_wait=ctrl_config.unpack_wait,
        )
        self.controller = Controller(
            store=self.store, reconciler=reconciler, config=ctrl_config
        )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting Package Manager")

        try:
            await self.controller.start()
        except asyncio.CancelledError:
            logger.info("Controller task cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running and self.store is None:
            return
        logger.info("Stopping Package Manager")
        self.running = False

        if self.controller:
            await self.controller.stop()

        if self.store:
            await self.store.close()
            self.store = None

        logger.info("Package Manager stopped")


async def main():
    """Main entry point."""
    app = Application()
    configure_logging(app.config.controller.log_level)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
