"""
TierDB Server - Main entry point.

This module starts the TierDB server with all components:
- Primary store (SQLite, hot tier)
- Archive store (S3 or in-memory, cold tier)
- HTTP server (RecordAccess REST API)
- Archival scheduler (primary -> archive, on an interval)

Run with the tierdb-server script or python -m dbaas.tierdb_server.main;
settings come from the environment (see config.py).

Invariants:
    - The primary store schema exists before requests are accepted
    - The archive store is connected before requests are accepted
    - Graceful shutdown stops the scheduler before closing the stores

How to change safely:
    - Components that talk to a tier start after that tier's store
    - A component started in start() must be released in _shutdown_components()
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .access import RecordAccess
from .api import HttpServer, create_http_app
from .archival import ArchivalEngine, ArchivalScheduler
from .archive import ArchiveStore, InMemoryArchiveStore, S3ArchiveStore
from .config import ArchiveBackend, ServerConfig
from .primary import SqlitePrimaryStore

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.VerboseJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def create_archive_store(config: ServerConfig) -> ArchiveStore:
    """Create the archive store selected by ARCHIVE_BACKEND."""
    if config.archive_backend == ArchiveBackend.S3:
        return S3ArchiveStore(config.s3)
    return InMemoryArchiveStore()


def create_primary_store(config: ServerConfig) -> SqlitePrimaryStore:
    """Create the primary store from storage settings."""
    return SqlitePrimaryStore(
        db_path=config.storage.db_path,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        cache_size_pages=config.storage.cache_size_pages,
    )


class Server:
    """TierDB Server orchestrator.

    Manages the lifecycle of all server components:
    - Primary and archive stores
    - HTTP server
    - Archival scheduler

    Attributes:
        config: Server configuration
        primary: SQLite primary store
        archive: Archive store
        access: Tier-agnostic record facade
        engine: Archival engine

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
        self.primary: SqlitePrimaryStore | None = None
        self.archive: ArchiveStore | None = None
        self.access: RecordAccess | None = None
        self.engine: ArchivalEngine | None = None
        self.scheduler: ArchivalScheduler | None = None
        self.http_server: HttpServer | None = None

        # Background tasks
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and all components."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting TierDB server")
        self.config.log_config()

        try:
            self.primary = create_primary_store(self.config)
            await self.primary.initialize()

            self.archive = create_archive_store(self.config)
            await self.archive.connect()
            logger.info("Archive store connected")

            prefix = self.config.s3.archive_prefix
            self.access = RecordAccess(self.primary, self.archive, archive_prefix=prefix)
            self.engine = ArchivalEngine.from_config(
                self.primary, self.archive, self.config.archival, archive_prefix=prefix
            )

            app = create_http_app(self.access, self.engine, self.config.http)
            self.http_server = HttpServer(app, self.config.http.host, self.config.http.port)
            await self.http_server.start()

            # Start archival scheduler if enabled
            if self.config.archival.enabled:
                self.scheduler = ArchivalScheduler(
                    self.engine,
                    interval_seconds=self.config.archival.interval_seconds,
                )
                scheduler_task = asyncio.create_task(self.scheduler.start())
                self._tasks.append(scheduler_task)

            self._running = True
            logger.info("TierDB server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._shutdown_components()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping TierDB server")
        await self._shutdown_components()
        self._running = False
        logger.info("TierDB server stopped")

    async def _shutdown_components(self) -> None:
        if self.scheduler:
            await self.scheduler.stop()

        # Stop background tasks
        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.http_server:
            await self.http_server.stop()

        if self.archive:
            await self.archive.close()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


async def serve(server: Server) -> None:
    """Run a server until SIGTERM or SIGINT, then shut it down."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, server.request_shutdown)

    try:
        await server.start()
    finally:
        await server.stop()
        logger.info("Shutdown complete")


def main() -> None:
    """tierdb-server entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    try:
        asyncio.run(serve(Server(config)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
