"""
Archival CLI tool for TierDB.

This tool runs the archival engine outside the server process, so any
external timer (cron, a cloud scheduler, a Kubernetes CronJob) can drive it:
- run: one bounded batch pass
- drain: passes until the backlog is empty (or max-passes is reached)
- status: record counts per status, records currently eligible for
  archival and the saved checkpoint

Usage:
    tierdb-archive run
    tierdb-archive drain --max-passes 20
    tierdb-archive status

Configuration comes from the same environment variables as the server.

Invariants:
    - `run` needs no arguments; each invocation resumes from the checkpoint
    - `run` and `drain` refuse ARCHIVE_BACKEND=memory, which would drop every
      archived record when the process exits
    - Exit code 2 means a tier was unavailable and the pass was aborted
    - Exit code 3 means a store call kept failing transiently
    - A pass skipped because another one is active exits 0

How to change safely:
    - Keep exit codes stable, schedulers alert on them
    - Keep JSON output keys stable for log pipelines
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..archival import ArchivalEngine, ArchivalRunResult
from ..archive import ArchiveStore
from ..config import ArchiveBackend, ServerConfig
from ..errors import RecordStoreError, SystemicStoreUnavailable
from ..main import create_archive_store, create_primary_store, setup_logging
from ..primary import SqlitePrimaryStore, iter_scan
from ..records import now_ms

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_SYSTEMIC_FAILURE = 2
EXIT_STORE_ERROR = 3

ARCHIVING_COMMANDS = ("run", "drain")


class ArchiveCLI:
    """Archival operations against the configured stores.

    Example:
        >>> cli = ArchiveCLI(ServerConfig.from_env())
        >>> result = await cli.run()
    """

    def __init__(
        self,
        config: ServerConfig,
        primary: SqlitePrimaryStore | None = None,
        archive: ArchiveStore | None = None,
    ) -> None:
        self.config = config
        self.primary = primary or create_primary_store(config)
        self.archive = archive or create_archive_store(config)

    def _engine(self) -> ArchivalEngine:
        return ArchivalEngine.from_config(
            self.primary,
            self.archive,
            self.config.archival,
            archive_prefix=self.config.s3.archive_prefix,
        )

    async def run(self) -> ArchivalRunResult:
        """Run one archival pass."""
        await self.primary.initialize()
        await self.archive.connect()
        try:
            return await self._engine().run_once()
        finally:
            await self.archive.close()

    async def drain(self, max_passes: int) -> list[ArchivalRunResult]:
        """Run passes until the backlog is empty."""
        await self.primary.initialize()
        await self.archive.connect()
        try:
            return await self._engine().drain(max_passes=max_passes)
        finally:
            await self.archive.close()

    async def count_eligible(self, now: int | None = None) -> int:
        """Count records past the retention window, one scan page at a time."""
        now = now if now is not None else now_ms()
        engine = self._engine()
        cutoff = now - engine.retention_ms

        count = 0
        async for _ in iter_scan(self.primary, cutoff, page_size=engine.page_size):
            count += 1
        return count

    async def status(self) -> dict[str, Any]:
        """Get record counts, the eligible backlog and the saved checkpoint."""
        return {
            "db_path": str(self.primary.db_path),
            "records": await self.primary.count_by_status(),
            "eligible": await self.count_eligible(),
            "checkpoint": await self.primary.load_checkpoint(ArchivalEngine.CHECKPOINT_NAME),
            "retention_days": self.config.archival.retention_days,
        }


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the archival tool."""
    parser = argparse.ArgumentParser(description="TierDB archival tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run one archival pass")

    drain_parser = subparsers.add_parser("drain", help="Run passes until the backlog is empty")
    drain_parser.add_argument(
        "--max-passes", type=int, default=100, help="Upper bound on passes (default: 100)"
    )

    subparsers.add_parser("status", help="Show record counts and the archival checkpoint")

    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    if args.command in ARCHIVING_COMMANDS and config.archive_backend == ArchiveBackend.MEMORY:
        print(
            f"Configuration error: '{args.command}' needs a durable archive; "
            "ARCHIVE_BACKEND=memory would lose every archived record on exit",
            file=sys.stderr,
        )
        sys.exit(EXIT_CONFIG_ERROR)

    setup_logging(config)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    cli = ArchiveCLI(config)

    try:
        if args.command == "run":
            result = asyncio.run(cli.run())
            print(json.dumps(result.to_dict(), indent=2))

        elif args.command == "drain":
            results = asyncio.run(cli.drain(args.max_passes))
            print(
                json.dumps(
                    {
                        "passes": len(results),
                        "archived": sum(r.archived for r in results),
                        "exhausted": bool(results) and results[-1].exhausted,
                        "results": [r.to_dict() for r in results],
                    },
                    indent=2,
                )
            )

        elif args.command == "status":
            print(json.dumps(asyncio.run(cli.status()), indent=2))

    except SystemicStoreUnavailable as e:
        print(f"Archival aborted, {e.tier} store unavailable: {e.message}", file=sys.stderr)
        sys.exit(EXIT_SYSTEMIC_FAILURE)
    except RecordStoreError as e:
        print(f"Archival failed ({e.code}): {e.message}", file=sys.stderr)
        sys.exit(EXIT_STORE_ERROR)

    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
