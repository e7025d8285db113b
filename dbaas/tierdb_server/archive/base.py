"""
Base protocol and types for the archive (cold) store.

Invariants:
    - put() overwrites; re-uploading the same key is always safe
    - get() reports absence as NOT_FOUND
    - stat() returns the checksum the object was written with

How to change safely:
    - Protocol changes require updating all implementations
    - Keep metadata keys lowercase; S3 lowercases user metadata
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..records import NotFound


@dataclass(frozen=True)
class ArchiveObjectInfo:
    """Metadata of a stored archive object.

    Attributes:
        key: Object key
        size_bytes: Body size in bytes
        checksum: "sha256:<hex>" of the body, if recorded
        metadata: User metadata written with the object
    """

    key: str
    size_bytes: int
    checksum: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ArchiveObject:
    """An archive object body plus its metadata."""

    info: ArchiveObjectInfo
    data: bytes


@runtime_checkable
class ArchiveStore(Protocol):
    """Protocol for cold-tier backends.

    Example:
        >>> archive = S3ArchiveStore(s3_config)
        >>> await archive.connect()
        >>> await archive.put("records/R1.json", body, {"checksum": "sha256:..."})
        >>> await archive.exists("records/R1.json")
        True
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open client resources."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release client resources."""
        ...

    @abstractmethod
    async def put(self, key: str, data: bytes, metadata: dict[str, str]) -> ArchiveObjectInfo:
        """Store data under key, overwriting any existing object.

        Raises:
            TransientStoreError: On retriable failures
            SystemicStoreUnavailable: If the store is unreachable
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> ArchiveObject | NotFound:
        """Fetch an object. Returns ArchiveObject or NOT_FOUND."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an object exists under key."""
        ...

    @abstractmethod
    async def stat(self, key: str) -> ArchiveObjectInfo | None:
        """Object metadata, or None if absent."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        ...
