"""
Record model and typed lookup results for TierDB.

A Record is the unit of storage. It lives in the primary store while it is
young and moves to the archive store once its timestamp falls behind the
retention window. Archival is a location move, not a content update.

Lookups never signal absence with an exception. They return either
Found (the record plus the tier that served it) or the NOT_FOUND sentinel,
so that "not found" can never be confused with an infrastructure failure.

Invariants:
    - record_id is the sole addressing key and is immutable
    - timestamp is set by writes only, never by archival
    - status only moves live -> pending -> archived through the engine
    - version increases on every write to the primary store

How to change safely:
    - New Record fields need defaults so archived objects stay readable
    - Keep NOT_FOUND a singleton; callers compare with `is`
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from .errors import InvalidRecordError

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


class ArchiveStatus(Enum):
    """Where a record currently lives.

    LIVE: primary store only
    PENDING: uploaded to the archive, primary copy not yet removed
    ARCHIVED: archive store only
    """

    LIVE = "live"
    PENDING = "pending"
    ARCHIVED = "archived"


class Tier(Enum):
    """Storage tier that served or holds a record."""

    HOT = "hot"
    COLD = "cold"


@dataclass
class Record:
    """A stored record.

    Attributes:
        record_id: Opaque unique identifier
        payload: Opaque payload bytes
        partition_key: Routing metadata kept with the record (defaults to
            record_id); records are addressed by record_id alone
        timestamp: Creation/last-write instant (Unix ms)
        schema_version: Payload schema tag written with archived copies
        status: Archival status
        version: Write counter maintained by the primary store
    """

    record_id: str
    payload: bytes
    partition_key: str = ""
    timestamp: int = 0
    schema_version: int = 1
    status: ArchiveStatus = ArchiveStatus.LIVE
    version: int = 0

    def __post_init__(self) -> None:
        if not self.record_id:
            raise InvalidRecordError("record_id is required", field_name="record_id")
        if not isinstance(self.payload, (bytes, bytearray)):
            raise InvalidRecordError("payload must be bytes", field_name="payload")
        self.payload = bytes(self.payload)
        if not self.partition_key:
            self.partition_key = self.record_id
        if not self.timestamp:
            self.timestamp = now_ms()


class NotFound:
    """Result type for a record that does not exist.

    Use the NOT_FOUND singleton rather than creating instances.
    """

    _instance: NotFound | None = None

    def __new__(cls) -> NotFound:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = NotFound()


@dataclass(frozen=True)
class Found:
    """Result of a successful lookup.

    Attributes:
        record: The record
        tier: Tier that served the record
    """

    record: Record
    tier: Tier = Tier.HOT

    @property
    def served_from_cold(self) -> bool:
        return self.tier == Tier.COLD


@dataclass(frozen=True)
class Deleted:
    """Result of a successful delete.

    Attributes:
        record_id: Deleted record identifier
        tiers: Tiers that held a copy
    """

    record_id: str
    tiers: tuple[Tier, ...] = field(default_factory=tuple)


LookupResult = Found | NotFound
DeleteResult = Deleted | NotFound
