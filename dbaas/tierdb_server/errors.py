"""
Error types for TierDB.

This module defines the exception hierarchy shared by the store adapters,
the archival engine and the access facade:
- RecordStoreError: Base exception
- TransientStoreError: Retriable failure of a single store call
- SystemicStoreUnavailable: A whole tier is unreachable
- VerificationFailure: An uploaded archive copy could not be confirmed
- ArchiveFormatError: An archive object cannot be decoded
- InvalidContinuationToken: A scan token is malformed
- InvalidRecordError: A caller supplied an unusable record

"Not found" is never an exception: lookups and deletes return typed
results (see records.py).

Invariants:
    - All errors inherit from RecordStoreError
    - Errors carry a stable code and debugging details
    - Store credentials never appear in error messages
"""

from __future__ import annotations

from typing import Any


class RecordStoreError(Exception):
    """Base exception for all TierDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TIERDB_ERROR"
        self.details = details or {}


class TransientStoreError(RecordStoreError):
    """A single store call failed for a retriable reason.

    Raised on timeouts, throttling and server-side 5xx responses.
    Callers retry with backoff; the archival engine only aborts a batch
    when this keeps happening beyond its retry budget.
    """

    def __init__(self, message: str, tier: str, operation: str | None = None) -> None:
        super().__init__(
            message,
            code="TRANSIENT",
            details={"tier": tier, "operation": operation},
        )
        self.tier = tier
        self.operation = operation


class SystemicStoreUnavailable(RecordStoreError):
    """A whole storage tier is unreachable.

    Aborts the current archival batch and is surfaced to whoever invoked
    the engine. Records already committed are not touched.
    """

    def __init__(self, message: str, tier: str) -> None:
        super().__init__(message, code="UNAVAILABLE", details={"tier": tier})
        self.tier = tier


class VerificationFailure(RecordStoreError):
    """The archive copy of a record could not be confirmed after upload."""

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message, code="VERIFICATION_FAILED", details={"key": key})
        self.key = key


class ArchiveFormatError(RecordStoreError):
    """An archive object is not a readable archived record."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message, code="ARCHIVE_FORMAT", details={"key": key})
        self.key = key


class InvalidContinuationToken(RecordStoreError):
    """A scan continuation token could not be decoded."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_TOKEN")


class InvalidRecordError(RecordStoreError):
    """A record supplied by a caller is missing required data."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message, code="INVALID_RECORD", details={"field": field_name})
        self.field_name = field_name
