"""
Unified record access for TierDB.

RecordAccess is the single read/write entry point for callers. It hides
which tier currently holds a record:
- get: primary first, archive on a primary miss
- put: always primary; re-hydrates archived ids as live
- delete: removes the record from every tier that holds it

Invariants:
    - A hot hit never touches the archive
    - NOT_FOUND is returned only when both tiers miss
    - Callers see Found / NOT_FOUND / Deleted; infrastructure failures raise
      RecordStoreError subclasses and are never reported as NOT_FOUND

How to change safely:
    - Keep the primary-first read order; the engine deletes from primary only
      after the archive copy is verified, so a primary miss followed by an
      archive read can never see a record in neither tier
    - Never add tier-specific result types to the public contract
"""

from __future__ import annotations

import logging
from typing import Any

from ..archive.base import ArchiveStore
from ..archive.codec import decode_record, derive_key
from ..primary.base import PrimaryStore
from ..records import (
    NOT_FOUND,
    Deleted,
    DeleteResult,
    Found,
    LookupResult,
    NotFound,
    Record,
    Tier,
)

logger = logging.getLogger(__name__)


class RecordAccess:
    """Tier-agnostic record access facade.

    Attributes:
        primary: Primary (hot) store
        archive: Archive (cold) store
        archive_prefix: Key prefix for archived objects

    Thread safety:
        Stateless apart from counters; safe to share between concurrent
        requests and to use while an archival pass is running.

    Example:
        >>> access = RecordAccess(primary, archive)
        >>> await access.put(Record(record_id="R1", payload=b'{"amount": 42}'))
        >>> result = await access.get("R1")
        >>> result.record.payload
        b'{"amount": 42}'
    """

    def __init__(
        self,
        primary: PrimaryStore,
        archive: ArchiveStore,
        archive_prefix: str = "records",
    ) -> None:
        self.primary = primary
        self.archive = archive
        self.archive_prefix = archive_prefix

        self._hot_reads = 0
        self._cold_reads = 0
        self._misses = 0
        self._writes = 0
        self._deletes = 0

    async def get(self, record_id: str) -> LookupResult:
        """Get a record from whichever tier holds it.

        Args:
            record_id: Record identifier

        Returns:
            Found (with tier HOT or COLD) or NOT_FOUND
        """
        result = await self.primary.get(record_id)
        if isinstance(result, Found):
            self._hot_reads += 1
            return result

        key = derive_key(record_id, self.archive_prefix)
        obj = await self.archive.get(key)
        if isinstance(obj, NotFound):
            self._misses += 1
            return NOT_FOUND

        record = decode_record(obj.data, key=key)
        self._cold_reads += 1
        logger.debug(
            "Record served from cold tier",
            extra={"record_id": record_id, "key": key},
        )
        return Found(record=record, tier=Tier.COLD)

    async def put(self, record: Record) -> Record:
        """Write a record to the primary store.

        A write to an archived id makes it live again; the archive copy is
        left in place and is overwritten when the record ages out again.

        Args:
            record: Record to write

        Returns:
            The stored record
        """
        stored = await self.primary.put(record)
        self._writes += 1
        logger.debug(
            "Record written",
            extra={"record_id": stored.record_id, "version": stored.version},
        )
        return stored

    async def delete(self, record_id: str) -> DeleteResult:
        """Delete a record from every tier.

        The primary copy is removed first, then the archive copy. Removing
        both (rather than stopping at the first hit) keeps a stale or
        pending archive copy from resurfacing through the cold read path.

        Args:
            record_id: Record identifier

        Returns:
            Deleted (listing the tiers that held a copy) or NOT_FOUND
        """
        tiers: list[Tier] = []

        primary_result = await self.primary.delete(record_id)
        if isinstance(primary_result, Deleted):
            tiers.append(Tier.HOT)

        if await self.archive.delete(derive_key(record_id, self.archive_prefix)):
            tiers.append(Tier.COLD)

        if not tiers:
            return NOT_FOUND

        self._deletes += 1
        logger.info(
            "Record deleted",
            extra={"record_id": record_id, "tiers": [t.value for t in tiers]},
        )
        return Deleted(record_id=record_id, tiers=tuple(tiers))

    @property
    def stats(self) -> dict[str, Any]:
        """Get access statistics."""
        return {
            "hot_reads": self._hot_reads,
            "cold_reads": self._cold_reads,
            "misses": self._misses,
            "writes": self._writes,
            "deletes": self._deletes,
        }
