"""
In-memory archive store implementation for testing.

This module provides a simple in-memory cold tier for:
- Unit tests
- Integration tests
- Local development without S3

Invariants:
    - All data is lost on process exit
    - Same overwrite and not-found semantics as S3ArchiveStore
    - Safe to use from multiple coroutines

How to change safely:
    - This is test/dev code, changes don't affect production
    - Keep interface compatible with the ArchiveStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter

from ..errors import RecordStoreError
from ..records import NOT_FOUND, NotFound
from .base import ArchiveObject, ArchiveObjectInfo
from .codec import compute_checksum

logger = logging.getLogger(__name__)


class InMemoryArchiveStore:
    """In-memory implementation of ArchiveStore for testing.

    Attributes:
        objects: Stored objects by key

    Example:
        >>> archive = InMemoryArchiveStore()
        >>> await archive.put("records/R1.json", b"{}", {})
        >>> await archive.exists("records/R1.json")
        True
    """

    def __init__(self) -> None:
        self.objects: dict[str, ArchiveObject] = {}
        self.calls: Counter[str] = Counter()
        self._failures: dict[str, list[Exception]] = {}
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryArchiveStore connected")

    async def close(self) -> None:
        """Close (data is kept so tests can inspect it)."""
        self._connected = False
        logger.debug("InMemoryArchiveStore closed")

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    async def put(self, key: str, data: bytes, metadata: dict[str, str]) -> ArchiveObjectInfo:
        """Store an object, overwriting any existing one."""
        self._maybe_fail("put")
        info = ArchiveObjectInfo(
            key=key,
            size_bytes=len(data),
            checksum=metadata.get("checksum") or compute_checksum(data),
            metadata=dict(metadata),
        )
        async with self._lock:
            self.objects[key] = ArchiveObject(info=info, data=bytes(data))
        return info

    async def get(self, key: str) -> ArchiveObject | NotFound:
        """Fetch an object."""
        self._maybe_fail("get")
        obj = self.objects.get(key)
        return obj if obj is not None else NOT_FOUND

    async def exists(self, key: str) -> bool:
        """Check whether an object exists."""
        self._maybe_fail("exists")
        return key in self.objects

    async def stat(self, key: str) -> ArchiveObjectInfo | None:
        """Get object metadata."""
        self._maybe_fail("stat")
        obj = self.objects.get(key)
        return obj.info if obj is not None else None

    async def delete(self, key: str) -> bool:
        """Delete an object."""
        self._maybe_fail("delete")
        async with self._lock:
            return self.objects.pop(key, None) is not None

    # Testing helpers

    def inject_failure(self, operation: str, exception: RecordStoreError, times: int = 1) -> None:
        """Make the next `times` calls of an operation raise exception.

        Args:
            operation: One of put, get, exists, stat, delete
            exception: Exception to raise
            times: Number of calls to fail
        """
        self._failures.setdefault(operation, []).extend([exception] * times)

    def clear_failures(self) -> None:
        """Drop all queued failures (testing helper)."""
        self._failures.clear()

    def corrupt(self, key: str, data: bytes) -> None:
        """Replace an object's body without updating its metadata (testing helper)."""
        obj = self.objects[key]
        self.objects[key] = ArchiveObject(
            info=ArchiveObjectInfo(
                key=key,
                size_bytes=len(data),
                checksum=obj.info.checksum,
                metadata=obj.info.metadata,
            ),
            data=data,
        )

    def get_object_count(self) -> int:
        """Number of stored objects (testing helper)."""
        return len(self.objects)
