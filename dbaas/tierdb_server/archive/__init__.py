"""
Archive (cold) store for TierDB.

This module provides the cheap, durable tier that holds aged records:
- S3 (production)
- In-memory (testing and local development)

Invariants:
    - One object per record, keyed deterministically from record_id
    - Uploads are idempotent overwrites
    - Archived objects are self-describing (format_version, schema_version)
"""

from .base import ArchiveObject, ArchiveObjectInfo, ArchiveStore
from .codec import (
    FORMAT_VERSION,
    EncodedRecord,
    compute_checksum,
    decode_record,
    derive_key,
    encode_record,
)
from .memory import InMemoryArchiveStore
from .s3 import S3ArchiveStore

__all__ = [
    # Protocol and types
    "ArchiveStore",
    "ArchiveObject",
    "ArchiveObjectInfo",
    # Object format
    "FORMAT_VERSION",
    "EncodedRecord",
    "compute_checksum",
    "decode_record",
    "derive_key",
    "encode_record",
    # Implementations
    "InMemoryArchiveStore",
    "S3ArchiveStore",
]
