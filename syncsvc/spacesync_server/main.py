"""
SpaceSync Server - Main entry point.

This module starts the SpaceSync server with all components:
- Connection pool and schema bootstrap
- Push Processor and Pull Diff Engine
- Change notifier
- HTTP server (push, pull, health)

Usage:
    python -m syncsvc.spacesync_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The schema is migrated before the HTTP site accepts requests
    - The store is the process-wide pool from get_pool(); stop() discards it
    - Graceful shutdown stops the HTTP site before closing the pool

How to change safely:
    - Register application mutators in build_registry()
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import SyncServicer, create_http_app
from .config import ServerConfig
from .db import ConnectionPool, RetryPolicy, get_pool, reset_pool
from .notify import ChangeNotifier, NullNotifier
from .sync import MutatorRegistry, PullEngine, PushProcessor, create_default_registry

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


def build_registry() -> MutatorRegistry:
    """Mutators served by this process."""
    return create_default_registry()


class Server:
    """SpaceSync Server orchestrator.

    Manages the lifecycle of all server components:
    - Connection pool
    - Push/pull services
    - HTTP site

    Attributes:
        config: Server configuration
        pool: Store connection pool
        notifier: Poke transport
        servicer: Push/pull service implementation

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            notifier: Optional poke transport (log-only if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.pool: ConnectionPool | None = None
        self.notifier: ChangeNotifier = notifier or NullNotifier()
        self.servicer: SyncServicer | None = None
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SpaceSync server")
        self.config.log_config()

        try:
            policy = RetryPolicy.from_config(self.config.transact)
            self.pool = await get_pool(self.config.storage, policy)

            push_processor = PushProcessor(
                pool=self.pool,
                mutators=build_registry(),
                notifier=self.notifier,
                retry_policy=policy,
                gap_policy=self.config.push.gap_policy,
            )
            pull_engine = PullEngine(pool=self.pool, retry_policy=policy)
            self.servicer = SyncServicer(self.pool, push_processor, pull_engine)

            app = create_http_app(self.servicer, self.config.http)
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.http.host, self.config.http.port)
            await site.start()
            logger.info(
                f"HTTP server running on http://{self.config.http.host}:{self.config.http.port}"
            )

            self._running = True
            logger.info("SpaceSync server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running and self._runner is None and self.pool is None:
            return

        logger.info("Stopping SpaceSync server")

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.pool:
            await reset_pool()
            self.pool = None

        self._running = False
        logger.info("SpaceSync server stopped")

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

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
