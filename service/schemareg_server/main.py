"""
Schemareg Server - Main entry point.

This module starts the registry with all components:
- Registry stores (SQLite or in-memory)
- Optional snapshot seeding of empty stores
- HTTP server

Usage:
    python -m service.schemareg_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Stores are open before the HTTP server accepts requests
    - Seeding only ever touches an empty registry
    - Graceful shutdown stops HTTP before closing the stores

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import create_http_app, start_http_server
from .config import ServerConfig
from .registry import (
    RegistryCoordinator,
    RegistryQueries,
    load_snapshot,
    restore_snapshot,
)
from .schema import SchemaFormat
from .store import SchemaStore, SubjectLedger, create_stores

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Schemareg server orchestrator.

    Manages the lifecycle of all server components:
    - Registry stores
    - Coordinator and query façade
    - HTTP server

    Attributes:
        config: Server configuration
        store: Global schema store
        ledger: Subject version ledger
        coordinator: Registration entry point
        queries: Read-only lookups

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: SchemaStore | None = None
        self.ledger: SubjectLedger | None = None
        self.coordinator: RegistryCoordinator | None = None
        self.queries: RegistryQueries | None = None
        self._runner: web.AppRunner | None = None

    async def open_registry(self) -> None:
        """Open the stores and build the coordinator and query façade."""
        self.store, self.ledger = create_stores(self.config.storage)
        await self.store.open()
        await self.ledger.open()

        if self.config.registry.seed_file:
            await self._seed(self.config.registry.seed_file)

        self.coordinator = RegistryCoordinator.from_config(
            self.store, self.ledger, self.config.registry
        )
        self.queries = RegistryQueries(
            self.store,
            self.ledger,
            default_format=SchemaFormat.from_str(self.config.registry.default_format),
        )

    async def _seed(self, seed_file: str) -> None:
        if await self.store.count() or await self.ledger.subjects():
            logger.info(f"Registry not empty, skipping seed file {seed_file}")
            return
        stats = await restore_snapshot(self.store, self.ledger, load_snapshot(seed_file))
        logger.info(
            f"Seeded registry from {seed_file}",
            extra={"schemas": stats.schemas, "subjects": stats.subjects, "versions": stats.versions},
        )

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Schemareg server")
        self.config.log_config()

        try:
            await self.open_registry()

            app = create_http_app(self.coordinator, self.queries, self.config.http)
            self._runner = await start_http_server(app, self.config.http)

            self._running = True
            logger.info("Schemareg server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._close_components()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping Schemareg server")
        await self._close_components()
        self._running = False
        logger.info("Schemareg server stopped")

    async def _close_components(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.ledger:
            await self.ledger.close()

        if self.store:
            await self.store.close()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create server
    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
