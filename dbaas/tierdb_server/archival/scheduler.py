"""
Periodic trigger for the archival engine.

Runs ArchivalEngine.run_once() every interval_seconds inside the server
process. Deployments that prefer an external timer (cron, a cloud
scheduler) can disable this and call `tierdb-archive run` instead; both
paths share the engine's lease, so they never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import RecordStoreError
from .engine import ArchivalEngine, ArchivalRunResult

logger = logging.getLogger(__name__)


class ArchivalScheduler:
    """Background loop that invokes the archival engine on a fixed interval.

    Example:
        >>> scheduler = ArchivalScheduler(engine, interval_seconds=86400)
        >>> await scheduler.start()  # Runs until stopped
    """

    def __init__(
        self,
        engine: ArchivalEngine,
        interval_seconds: float = 86400,
        initial_delay_seconds: float = 0,
    ) -> None:
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds

        self._running = False
        self._tick_count = 0
        self._failed_ticks = 0

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Archival scheduler already running")
            return

        self._running = True
        logger.info(
            "Starting archival scheduler",
            extra={"interval_seconds": self.interval_seconds},
        )

        try:
            if self.initial_delay_seconds:
                await asyncio.sleep(self.initial_delay_seconds)

            while self._running:
                await self.tick()
                await asyncio.sleep(self.interval_seconds)

        except asyncio.CancelledError:
            logger.info("Archival scheduler cancelled")
        except Exception as e:
            logger.error(f"Archival scheduler error: {e}", exc_info=True)
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        self._running = False
        logger.info("Stopping archival scheduler")

    async def tick(self) -> ArchivalRunResult | None:
        """Run one scheduled pass.

        Store failures are logged and left for the next tick, which is the
        scheduler's backoff.

        Returns:
            The pass result, or None if the pass failed
        """
        self._tick_count += 1
        try:
            return await self.engine.run_once()
        except RecordStoreError as e:
            self._failed_ticks += 1
            logger.error(
                "Scheduled archival pass failed, retrying next interval",
                extra={"code": e.code, "error": e.message, "details": e.details},
            )
            return None
        except Exception as e:
            self._failed_ticks += 1
            logger.error(f"Unexpected error in scheduled archival pass: {e}", exc_info=True)
            return None

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "ticks": self._tick_count,
            "failed_ticks": self._failed_ticks,
            "interval_seconds": self.interval_seconds,
        }
