"""
Archival engine for TierDB.

The ArchivalEngine moves records whose timestamp has fallen behind the
retention window from the primary store to the archive store. Each
invocation (a "batch pass") processes at most batch_size records and
resumes where the previous pass stopped, so a large backlog is drained
incrementally across invocations.

Per-record state machine:
    1. Upload   live -> pending   put the encoded record (skipped when the
                                  archive already holds an identical copy),
                                  then compare-and-set status to pending
    2. Verify                     stat the object; checksum and size must match
    3. Commit   pending -> archived
                                  delete from primary, conditional on the
                                  version observed at scan time

Invariants:
    - A record is never deleted from primary before its archive copy is verified
    - A newer write is never deleted (delete_if_version)
    - Only one pass runs at a time (in-process lock + primary store lease)
    - Per-record failures never abort a batch; systemic failures always do
    - The checkpoint always points just after the last processed record

How to change safely:
    - Never reorder upload/verify/commit
    - Test crash recovery (failure between verify and commit) after changes
    - Keep the archive body deterministic so re-uploads are content-identical
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, TypeVar

from ..archive.base import ArchiveObjectInfo, ArchiveStore
from ..archive.codec import EncodedRecord, encode_record
from ..errors import (
    InvalidContinuationToken,
    RecordStoreError,
    SystemicStoreUnavailable,
    TransientStoreError,
    VerificationFailure,
)
from ..primary.base import ELIGIBLE_STATUSES, ContinuationToken, PrimaryStore
from ..records import DAY_MS, NotFound, Record, now_ms
from ..retry import retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordOutcome(Enum):
    """What happened to one record during a pass."""

    ARCHIVED = "archived"
    CONFLICT = "conflict"
    VERIFY_FAILED = "verify_failed"
    FAILED = "failed"


@dataclass
class ArchivalRunResult:
    """Summary of one batch pass.

    Attributes:
        started_at: Pass start (Unix ms)
        cutoff_ms: Records with timestamp < cutoff_ms were eligible
        scanned: Records examined
        archived: Records committed to the archive and removed from primary
        uploads: Archive uploads performed
        uploads_skipped: Uploads skipped because an identical copy existed
        verification_failures: Records whose archive copy could not be confirmed
        failed: Records that failed for other per-record reasons
        conflicts: Records skipped because a newer write landed
        skipped: Pass did not run because another pass was active
        aborted: Pass stopped on a systemic failure
        exhausted: Pass reached the end of eligible records
        timed_out: Pass stopped on its time budget
        continuation: Checkpoint saved for the next pass
        duration_ms: Wall time of the pass
        error: Error message if aborted
    """

    started_at: int = 0
    cutoff_ms: int = 0
    scanned: int = 0
    archived: int = 0
    uploads: int = 0
    uploads_skipped: int = 0
    verification_failures: int = 0
    failed: int = 0
    conflicts: int = 0
    skipped: bool = False
    aborted: bool = False
    exhausted: bool = False
    timed_out: bool = False
    continuation: str | None = None
    duration_ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ArchivalEngine:
    """Moves aged records from the primary store to the archive store.

    The engine is safe to invoke repeatedly with no arguments: every pass
    re-derives its work from the primary store and the saved checkpoint.

    Attributes:
        primary: Primary (hot) store
        archive: Archive (cold) store
        archive_prefix: Key prefix for archived objects
        retention_days: Age after which records become eligible
        batch_size: Maximum records per pass

    Example:
        >>> engine = ArchivalEngine(primary, archive, retention_days=90, batch_size=1000)
        >>> result = await engine.run_once()
        >>> result.archived
        1000
    """

    CHECKPOINT_NAME = "archival"
    LEASE_NAME = "archival"

    def __init__(
        self,
        primary: PrimaryStore,
        archive: ArchiveStore,
        archive_prefix: str = "records",
        retention_days: int = 90,
        batch_size: int = 1000,
        page_size: int = 200,
        time_budget_seconds: float = 840.0,
        max_retries: int = 3,
        retry_delay_ms: int = 200,
        max_consecutive_failures: int = 25,
        lease_ttl_seconds: int = 3600,
        owner_id: str | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            primary: Primary store
            archive: Archive store
            archive_prefix: Key prefix for archived objects
            retention_days: Retention window in days
            batch_size: Maximum records processed per pass
            page_size: Records fetched per scan page
            time_budget_seconds: Execution-time budget per pass
            max_retries: Retries per store call on transient errors
            retry_delay_ms: Initial retry delay
            max_consecutive_failures: Consecutive record failures that abort a pass
            lease_ttl_seconds: Lifetime of the cross-process lease
            owner_id: Lease owner identity (generated if not provided)
        """
        self.primary = primary
        self.archive = archive
        self.archive_prefix = archive_prefix
        self.retention_days = retention_days
        self.batch_size = batch_size
        self.page_size = page_size
        self.time_budget_seconds = time_budget_seconds
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.max_consecutive_failures = max_consecutive_failures
        self.lease_ttl_seconds = lease_ttl_seconds
        self.owner_id = owner_id or f"{socket.gethostname()}:{uuid.uuid4().hex[:12]}"

        self._run_lock = asyncio.Lock()
        self._run_count = 0
        self._archived_count = 0
        self.last_result: ArchivalRunResult | None = None

    @classmethod
    def from_config(
        cls,
        primary: PrimaryStore,
        archive: ArchiveStore,
        archival_config: Any,
        archive_prefix: str = "records",
    ) -> ArchivalEngine:
        """Create an engine from an ArchivalConfig."""
        return cls(
            primary=primary,
            archive=archive,
            archive_prefix=archive_prefix,
            retention_days=archival_config.retention_days,
            batch_size=archival_config.batch_size,
            page_size=archival_config.page_size,
            time_budget_seconds=archival_config.time_budget_seconds,
            max_retries=archival_config.max_retries,
            retry_delay_ms=archival_config.retry_delay_ms,
            max_consecutive_failures=archival_config.max_consecutive_failures,
            lease_ttl_seconds=archival_config.lease_ttl_seconds,
        )

    @property
    def retention_ms(self) -> int:
        return self.retention_days * DAY_MS

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def run_once(self, now: int | None = None) -> ArchivalRunResult:
        """Run one batch pass.

        Args:
            now: Current time override (Unix ms), for tests and backfills

        Returns:
            ArchivalRunResult; skipped=True if another pass was active

        Raises:
            SystemicStoreUnavailable: If a tier is unreachable. The checkpoint
                is saved first, so the next pass resumes safely.
        """
        now = now if now is not None else now_ms()

        if self._run_lock.locked():
            logger.warning("Archival pass already running in this process, skipping")
            return ArchivalRunResult(started_at=now, skipped=True)

        async with self._run_lock:
            ttl_ms = self.lease_ttl_seconds * 1000
            if not await self.primary.acquire_lease(self.LEASE_NAME, self.owner_id, ttl_ms):
                logger.warning(
                    "Archival lease held by another process, skipping",
                    extra={"owner": self.owner_id},
                )
                return ArchivalRunResult(started_at=now, skipped=True)

            try:
                return await self._run_batch(now)
            finally:
                await self._release_lease()

    async def drain(self, max_passes: int = 100, now: int | None = None) -> list[ArchivalRunResult]:
        """Run passes until the backlog is empty.

        Args:
            max_passes: Upper bound on passes
            now: Current time override (Unix ms)

        Returns:
            Results of every pass that ran
        """
        results = []
        for _ in range(max_passes):
            result = await self.run_once(now=now)
            results.append(result)
            if result.skipped or result.exhausted:
                break
        return results

    async def _release_lease(self) -> None:
        try:
            await self.primary.release_lease(self.LEASE_NAME, self.owner_id)
        except RecordStoreError as e:
            # The lease expires on its own after lease_ttl_seconds
            logger.warning(f"Failed to release archival lease: {e}")

    async def _retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        return await retry_async(
            operation,
            max_retries=self.max_retries,
            retry_delay_ms=self.retry_delay_ms,
            description=description,
        )

    async def _load_checkpoint(self) -> str | None:
        token = await self._retry(
            lambda: self.primary.load_checkpoint(self.CHECKPOINT_NAME), "load checkpoint"
        )
        if token is None:
            return None
        try:
            ContinuationToken.decode(token)
        except InvalidContinuationToken:
            logger.warning("Discarding malformed archival checkpoint", extra={"token": token})
            return None
        return token

    async def _run_batch(self, now: int) -> ArchivalRunResult:
        """Process up to batch_size eligible records."""
        started = time.monotonic()
        deadline = started + self.time_budget_seconds
        cutoff = now - self.retention_ms

        result = ArchivalRunResult(started_at=now, cutoff_ms=cutoff)
        token = await self._load_checkpoint()
        consecutive_failures = 0

        logger.info(
            "Starting archival pass",
            extra={
                "cutoff_ms": cutoff,
                "batch_size": self.batch_size,
                "resumed": token is not None,
            },
        )

        try:
            while result.scanned < self.batch_size and not result.timed_out:
                limit = min(self.page_size, self.batch_size - result.scanned)
                try:
                    page = await self._retry(
                        lambda: self.primary.scan(
                            cutoff, statuses=ELIGIBLE_STATUSES, limit=limit, continuation=token
                        ),
                        "primary scan",
                    )
                except TransientStoreError as e:
                    raise SystemicStoreUnavailable(
                        f"Primary scan kept failing: {e.message}", tier="primary"
                    ) from e

                for record in page.records:
                    if time.monotonic() >= deadline:
                        result.timed_out = True
                        break

                    result.scanned += 1
                    outcome = await self._process_record(record, result)
                    token = ContinuationToken.after(record).encode()

                    if outcome in (RecordOutcome.FAILED, RecordOutcome.VERIFY_FAILED):
                        consecutive_failures += 1
                        if consecutive_failures >= self.max_consecutive_failures:
                            raise SystemicStoreUnavailable(
                                f"{consecutive_failures} consecutive record failures",
                                tier="archive",
                            )
                    else:
                        consecutive_failures = 0

                if page.continuation is None and not result.timed_out:
                    result.exhausted = True
                    break

        except SystemicStoreUnavailable as e:
            result.aborted = True
            result.error = e.message
            logger.error(
                "Archival pass aborted",
                extra={"tier": e.tier, "error": e.message, "scanned": result.scanned},
            )
            raise

        finally:
            result.continuation = None if result.exhausted else token
            result.duration_ms = int((time.monotonic() - started) * 1000)
            await self._save_checkpoint(result)
            self._run_count += 1
            self._archived_count += result.archived
            self.last_result = result

        if result.timed_out:
            logger.warning(
                "Archival pass stopped on time budget",
                extra={"time_budget_seconds": self.time_budget_seconds},
            )

        logger.info("Archival pass complete", extra=result.to_dict())
        return result

    async def _save_checkpoint(self, result: ArchivalRunResult) -> None:
        try:
            await self._retry(
                lambda: self.primary.save_checkpoint(self.CHECKPOINT_NAME, result.continuation),
                "save checkpoint",
            )
        except RecordStoreError as e:
            # Losing the checkpoint only means the next pass rescans from the start
            logger.error(f"Failed to save archival checkpoint: {e}")

    async def _process_record(self, record: Record, result: ArchivalRunResult) -> RecordOutcome:
        """Run one record through upload -> verify -> commit, isolating failures."""
        try:
            outcome = await self.archive_record(record, result)
        except SystemicStoreUnavailable:
            raise
        except VerificationFailure as e:
            result.verification_failures += 1
            logger.warning(
                "Archive copy not confirmed, record kept in primary",
                extra={"record_id": record.record_id, "key": e.key, "error": e.message},
            )
            return RecordOutcome.VERIFY_FAILED
        except RecordStoreError as e:
            result.failed += 1
            logger.warning(
                "Failed to archive record",
                extra={"record_id": record.record_id, "code": e.code, "error": e.message},
            )
            return RecordOutcome.FAILED

        if outcome == RecordOutcome.ARCHIVED:
            result.archived += 1
        elif outcome == RecordOutcome.CONFLICT:
            result.conflicts += 1
        return outcome

    async def archive_record(
        self, record: Record, result: ArchivalRunResult | None = None
    ) -> RecordOutcome:
        """Migrate a single record.

        Args:
            record: Record as seen by the scan (its version is the CAS guard)
            result: Optional pass result to count uploads in

        Returns:
            ARCHIVED or CONFLICT

        Raises:
            VerificationFailure: If the archive copy could not be confirmed
            TransientStoreError: If a store call kept failing
            SystemicStoreUnavailable: If a tier is unreachable
        """
        encoded = encode_record(record, self.archive_prefix)

        # Upload: live -> pending
        existing = await self._retry(lambda: self.archive.stat(encoded.key), "archive stat")
        if self._matches(existing, encoded):
            if result is not None:
                result.uploads_skipped += 1
            logger.debug(
                "Identical archive copy exists, skipping upload",
                extra={"record_id": record.record_id, "key": encoded.key},
            )
        else:
            await self._retry(
                lambda: self.archive.put(encoded.key, encoded.body, encoded.metadata),
                "archive put",
            )
            if result is not None:
                result.uploads += 1

        marked = await self._retry(
            lambda: self.primary.mark_pending(record.record_id, record.version),
            "mark pending",
        )
        if not marked:
            logger.info(
                "Record changed during archival, leaving it live",
                extra={"record_id": record.record_id, "version": record.version},
            )
            await self._discard_orphan(record, encoded.key)
            return RecordOutcome.CONFLICT

        # Verify
        stored = await self._retry(lambda: self.archive.stat(encoded.key), "archive verify")
        if not self._matches(stored, encoded):
            raise VerificationFailure(
                f"Archive copy of {record.record_id} missing or different after upload",
                key=encoded.key,
            )

        # Commit: pending -> archived
        deleted = await self._retry(
            lambda: self.primary.delete_if_version(record.record_id, record.version),
            "primary delete",
        )
        if not deleted:
            logger.info(
                "Record rewritten before commit, keeping the newer primary copy",
                extra={"record_id": record.record_id, "version": record.version},
            )
            await self._discard_orphan(record, encoded.key)
            return RecordOutcome.CONFLICT

        logger.debug(
            "Archived record",
            extra={"record_id": record.record_id, "key": encoded.key},
        )
        return RecordOutcome.ARCHIVED

    async def _discard_orphan(self, record: Record, key: str) -> None:
        """Remove the archive copy of a record that was deleted mid-migration.

        If the record was rewritten it is still in primary, which reads
        prefer, and the archive copy is harmless. If it was deleted, the
        copy uploaded by this pass would resurrect it on the cold path.
        """
        current = await self._retry(
            lambda: self.primary.get(record.record_id), "primary get"
        )
        if isinstance(current, NotFound):
            await self._retry(lambda: self.archive.delete(key), "archive delete")
            logger.info(
                "Removed archive copy of a record deleted during archival",
                extra={"record_id": record.record_id, "key": key},
            )

    @staticmethod
    def _matches(info: ArchiveObjectInfo | None, encoded: EncodedRecord) -> bool:
        return (
            info is not None
            and info.size_bytes == encoded.size_bytes
            and info.checksum == encoded.checksum
        )

    @property
    def stats(self) -> dict[str, Any]:
        """Get engine statistics."""
        return {
            "running": self.is_running,
            "runs": self._run_count,
            "archived_count": self._archived_count,
            "retention_days": self.retention_days,
            "batch_size": self.batch_size,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

