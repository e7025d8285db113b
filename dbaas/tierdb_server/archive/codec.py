"""
Archived record object format.

Each archived record is one JSON object at a key derived from its id:
    <prefix>/<percent-quoted record_id>.json

Body (UTF-8 JSON, sorted keys, no whitespace):
    {
        "format_version": 1,
        "payload_b64": "...",
        "payload_sha256": "sha256:...",
        "partition_key": "...",
        "record_id": "...",
        "schema_version": 1,
        "timestamp": 1700000000000
    }

Invariants:
    - Encoding is deterministic: the same record always yields identical bytes
    - The key depends only on record_id, so retries target the same object
    - Decoding verifies the payload checksum

How to change safely:
    - Format changes require a new format_version
    - decode_record() must keep reading every format_version ever written
    - Never put volatile values (upload time, hostnames) in the body
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass
from urllib.parse import quote

from ..errors import ArchiveFormatError, InvalidRecordError
from ..records import ArchiveStatus, Record

FORMAT_VERSION = 1
CONTENT_TYPE = "application/json"


def compute_checksum(data: bytes) -> str:
    """Compute SHA-256 checksum of data."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def derive_key(record_id: str, prefix: str = "records") -> str:
    """Archive object key for a record id."""
    safe_id = quote(record_id, safe="-_.~")
    if prefix:
        return f"{prefix.rstrip('/')}/{safe_id}.json"
    return f"{safe_id}.json"


@dataclass(frozen=True)
class EncodedRecord:
    """A record serialized for the archive.

    Attributes:
        key: Archive object key
        body: Serialized object body
        checksum: Checksum of body
        metadata: Object metadata to store alongside body
    """

    key: str
    body: bytes
    checksum: str
    metadata: dict[str, str]

    @property
    def size_bytes(self) -> int:
        return len(self.body)


def encode_record(record: Record, prefix: str = "records") -> EncodedRecord:
    """Serialize a record for upload.

    Args:
        record: Record to serialize
        prefix: Archive key prefix

    Returns:
        EncodedRecord with key, body, checksum and metadata
    """
    document = {
        "format_version": FORMAT_VERSION,
        "record_id": record.record_id,
        "partition_key": record.partition_key,
        "timestamp": record.timestamp,
        "schema_version": record.schema_version,
        "payload_b64": base64.b64encode(record.payload).decode("ascii"),
        "payload_sha256": compute_checksum(record.payload),
    }
    body = json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")
    checksum = compute_checksum(body)
    return EncodedRecord(
        key=derive_key(record.record_id, prefix),
        body=body,
        checksum=checksum,
        metadata={
            "checksum": checksum,
            "record-id": quote(record.record_id, safe=""),
            "schema-version": str(record.schema_version),
            "timestamp": str(record.timestamp),
        },
    )


def decode_record(body: bytes, key: str | None = None) -> Record:
    """Deserialize an archived record.

    Args:
        body: Object body
        key: Object key, for error messages

    Returns:
        Record with status ARCHIVED

    Raises:
        ArchiveFormatError: If the body is not a valid archived record
    """
    try:
        document = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ArchiveFormatError(f"Archive object is not JSON: {e}", key=key) from e

    if not isinstance(document, dict):
        raise ArchiveFormatError("Archive object is not a JSON object", key=key)

    format_version = document.get("format_version")
    if format_version != FORMAT_VERSION:
        raise ArchiveFormatError(
            f"Unsupported archive format_version: {format_version!r}", key=key
        )

    try:
        payload = base64.b64decode(document["payload_b64"], validate=True)
        record = Record(
            record_id=document["record_id"],
            payload=payload,
            partition_key=document["partition_key"],
            timestamp=int(document["timestamp"]),
            schema_version=int(document["schema_version"]),
            status=ArchiveStatus.ARCHIVED,
        )
    except (KeyError, TypeError, ValueError, binascii.Error, InvalidRecordError) as e:
        raise ArchiveFormatError(f"Malformed archive object: {e}", key=key) from e

    expected = document.get("payload_sha256")
    if expected is not None and expected != compute_checksum(payload):
        raise ArchiveFormatError("Archived payload checksum mismatch", key=key)

    return record
