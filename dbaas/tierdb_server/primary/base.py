"""
Base protocol and types for the primary (hot) store.

This module defines the PrimaryStore protocol that all hot-tier backends
must implement, along with scan pagination types.

Invariants:
    - get/delete report absence through NOT_FOUND, never by raising
    - records are addressed by record_id alone; partition_key is carried data
    - scan pages are ordered by (timestamp, record_id)
    - a continuation token resumes strictly after the record it was built from
    - mark_pending and delete_if_version only succeed if version is unchanged

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the token encoding backward compatible; tokens are persisted
"""

from __future__ import annotations

import base64
import binascii
import json
from abc import abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..errors import InvalidContinuationToken
from ..records import ArchiveStatus, DeleteResult, LookupResult, Record

ELIGIBLE_STATUSES = (ArchiveStatus.LIVE, ArchiveStatus.PENDING)


@dataclass(frozen=True)
class ContinuationToken:
    """Scan position just after a given record.

    Attributes:
        timestamp: Timestamp of the last returned record (Unix ms)
        record_id: Identifier of the last returned record
    """

    timestamp: int
    record_id: str

    @classmethod
    def after(cls, record: Record) -> ContinuationToken:
        return cls(timestamp=record.timestamp, record_id=record.record_id)

    def encode(self) -> str:
        """Encode as an opaque URL-safe string."""
        raw = json.dumps([self.timestamp, self.record_id], separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> ContinuationToken:
        """Decode a token produced by encode().

        Raises:
            InvalidContinuationToken: If the token is malformed
        """
        try:
            raw = base64.urlsafe_b64decode(token.encode("ascii"))
            timestamp, record_id = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError, TypeError) as e:
            raise InvalidContinuationToken(f"Malformed continuation token: {e}") from e

        if not isinstance(timestamp, int) or not isinstance(record_id, str):
            raise InvalidContinuationToken("Malformed continuation token")
        return cls(timestamp=timestamp, record_id=record_id)


@dataclass
class ScanPage:
    """One page of a timestamp range scan.

    Attributes:
        records: Records in scan order
        continuation: Token for the next page, None on the last page
    """

    records: list[Record] = field(default_factory=list)
    continuation: str | None = None


@runtime_checkable
class PrimaryStore(Protocol):
    """Protocol for hot-tier backends.

    Durability contract:
        - put() returns only after the write is committed
        - mark_pending() is a compare-and-set on (version, status)
        - delete_if_version() never removes a newer write

    Example:
        >>> store = SqlitePrimaryStore("/var/lib/tierdb/primary.db")
        >>> await store.initialize()
        >>> rec = await store.put(Record(record_id="R1", payload=b"{}"))
        >>> result = await store.get("R1")
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the backing schema if it does not exist."""
        ...

    @abstractmethod
    async def put(self, record: Record) -> Record:
        """Insert or replace a record.

        The stored record is reset to LIVE and its version is bumped.

        Returns:
            The stored record with its new version
        """
        ...

    @abstractmethod
    async def get(self, record_id: str) -> LookupResult:
        """Point lookup. Returns Found or NOT_FOUND."""
        ...

    @abstractmethod
    async def delete(self, record_id: str) -> DeleteResult:
        """Point delete. Returns Deleted or NOT_FOUND."""
        ...

    @abstractmethod
    async def scan(
        self,
        cutoff_ms: int,
        statuses: Sequence[ArchiveStatus] = ELIGIBLE_STATUSES,
        limit: int = 200,
        continuation: str | None = None,
    ) -> ScanPage:
        """Return one page of records with timestamp < cutoff_ms.

        Raises:
            InvalidContinuationToken: If continuation is malformed
        """
        ...

    @abstractmethod
    async def mark_pending(self, record_id: str, expected_version: int) -> bool:
        """Set status to PENDING if the record still has expected_version."""
        ...

    @abstractmethod
    async def delete_if_version(self, record_id: str, expected_version: int) -> bool:
        """Delete the record only if it still has expected_version."""
        ...

    @abstractmethod
    async def load_checkpoint(self, name: str) -> str | None:
        """Load a persisted scan continuation token."""
        ...

    @abstractmethod
    async def save_checkpoint(self, name: str, token: str | None) -> None:
        """Persist (or clear, with None) a scan continuation token."""
        ...

    @abstractmethod
    async def acquire_lease(self, name: str, owner: str, ttl_ms: int) -> bool:
        """Take a named lease unless another owner holds an unexpired one."""
        ...

    @abstractmethod
    async def release_lease(self, name: str, owner: str) -> None:
        """Release a lease held by owner."""
        ...

    @abstractmethod
    async def count_by_status(self) -> dict[str, int]:
        """Number of records per status."""
        ...


async def iter_scan(
    store: PrimaryStore,
    cutoff_ms: int,
    statuses: Sequence[ArchiveStatus] = ELIGIBLE_STATUSES,
    page_size: int = 200,
    continuation: str | None = None,
) -> AsyncIterator[Record]:
    """Lazily iterate over all records with timestamp < cutoff_ms.

    Pages are fetched on demand, so memory use is bounded by page_size
    regardless of how many records match. Resume an interrupted iteration
    with ContinuationToken.after(last_record).encode().

    Args:
        store: Primary store to scan
        cutoff_ms: Exclusive upper bound on timestamp
        statuses: Statuses to include
        page_size: Records per page
        continuation: Token to resume from

    Yields:
        Records in scan order
    """
    token = continuation
    while True:
        page = await store.scan(cutoff_ms, statuses=statuses, limit=page_size, continuation=token)
        for record in page.records:
            yield record
        if page.continuation is None:
            return
        token = page.continuation
