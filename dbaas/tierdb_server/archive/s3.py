"""
S3 archive store for TierDB.

Stores one object per archived record in an S3 (or S3-compatible) bucket:
    s3://<bucket>/<archive_prefix>/<record_id>.json

Storage classes and lifecycle transitions (e.g. demoting old objects to
cheaper classes) are bucket policy, configured out-of-band; they do not
affect correctness here.

Invariants:
    - put_object overwrites, so re-uploading a key is idempotent
    - Every call is bounded by timeout_seconds
    - Credentials are never logged

How to change safely:
    - Keep the error-code mapping in _translate_client_error exhaustive for
      not-found codes; a missed one turns a cold miss into an error
    - Test against MinIO before changing request parameters
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..errors import RecordStoreError, SystemicStoreUnavailable, TransientStoreError
from ..records import NOT_FOUND, NotFound
from .base import ArchiveObject, ArchiveObjectInfo
from .codec import CONTENT_TYPE

logger = logging.getLogger(__name__)

TIER = "archive"

NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
TRANSIENT_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "RequestTimeout",
        "RequestTimeoutException",
        "InternalError",
        "ServiceUnavailable",
        "500",
        "502",
        "503",
        "504",
    }
)
SYSTEMIC_CODES = frozenset(
    {
        "NoSuchBucket",
        "AccessDenied",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "ExpiredToken",
        "403",
    }
)


class _ObjectMissing(Exception):
    """Internal signal for a not-found S3 response."""


def _translate_client_error(e: ClientError, operation: str) -> Exception:
    """Map a botocore ClientError onto the TierDB error taxonomy."""
    error = e.response.get("Error", {})
    code = str(error.get("Code", ""))
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

    if code in NOT_FOUND_CODES:
        return _ObjectMissing(code)
    if code in SYSTEMIC_CODES:
        return SystemicStoreUnavailable(f"S3 {operation} failed: {code}", tier=TIER)
    if code in TRANSIENT_CODES or status >= 500:
        return TransientStoreError(f"S3 {operation} failed: {code}", tier=TIER, operation=operation)
    return RecordStoreError(f"S3 {operation} failed: {code}", code="ARCHIVE_ERROR")


class S3ArchiveStore:
    """Archive store backed by S3.

    Attributes:
        s3_config: S3Config instance

    Example:
        >>> archive = S3ArchiveStore(config.s3)
        >>> await archive.connect()
        >>> await archive.put("records/R1.json", body, {"checksum": checksum})
        >>> await archive.close()
    """

    def __init__(self, s3_config: Any) -> None:
        """Initialize the store.

        Args:
            s3_config: S3Config instance
        """
        self.s3_config = s3_config
        self.timeout_seconds = getattr(s3_config, "timeout_seconds", 30.0)
        self._session = None
        self._s3_ctx = None
        self._s3_client = None

    @property
    def is_connected(self) -> bool:
        return self._s3_client is not None

    async def connect(self) -> None:
        """Initialize S3 client."""
        if self._s3_client is not None:
            return

        self._session = get_session()

        client_kwargs: dict[str, Any] = {
            "region_name": self.s3_config.region,
            "config": AioConfig(
                connect_timeout=self.timeout_seconds,
                read_timeout=self.timeout_seconds,
                retries={"max_attempts": 2, "mode": "standard"},
            ),
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        self._s3_ctx = self._session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()
        logger.info(
            "S3 archive store connected",
            extra={"bucket": self.s3_config.bucket, "endpoint": self.s3_config.endpoint_url},
        )

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_client:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None
            self._s3_ctx = None

    async def _call(self, operation: str, **params: Any) -> dict[str, Any]:
        """Run one S3 request against the bucket with a timeout and translated errors."""
        if self._s3_client is None:
            raise SystemicStoreUnavailable("S3 archive store not connected", tier=TIER)

        request = getattr(self._s3_client, operation)(Bucket=self.s3_config.bucket, **params)
        try:
            return await asyncio.wait_for(request, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise TransientStoreError(
                f"S3 {operation} timed out", tier=TIER, operation=operation
            )
        except ClientError as e:
            raise _translate_client_error(e, operation) from e
        except EndpointConnectionError as e:
            raise SystemicStoreUnavailable(f"S3 endpoint unreachable: {e}", tier=TIER) from e
        except (ConnectTimeoutError, ReadTimeoutError, ConnectionClosedError) as e:
            raise TransientStoreError(
                f"S3 {operation} connection error: {e}", tier=TIER, operation=operation
            ) from e

    async def put(self, key: str, data: bytes, metadata: dict[str, str]) -> ArchiveObjectInfo:
        """Upload an object, overwriting any existing one.

        Args:
            key: Object key
            data: Object body
            metadata: User metadata (lowercase keys)

        Returns:
            Info of the stored object
        """
        await self._call(
            "put_object",
            Key=key,
            Body=data,
            ContentType=CONTENT_TYPE,
            Metadata=metadata,
        )

        logger.debug(
            "Uploaded archive object",
            extra={"key": key, "size_bytes": len(data)},
        )

        return ArchiveObjectInfo(
            key=key,
            size_bytes=len(data),
            checksum=metadata.get("checksum"),
            metadata=dict(metadata),
        )

    async def get(self, key: str) -> ArchiveObject | NotFound:
        """Download an object.

        Args:
            key: Object key

        Returns:
            ArchiveObject or NOT_FOUND
        """
        try:
            response = await self._call("get_object", Key=key)
            content = await asyncio.wait_for(
                response["Body"].read(), timeout=self.timeout_seconds
            )
        except _ObjectMissing:
            return NOT_FOUND
        except asyncio.TimeoutError:
            raise TransientStoreError("S3 body read timed out", tier=TIER, operation="get_object")

        metadata = response.get("Metadata", {})
        return ArchiveObject(
            info=ArchiveObjectInfo(
                key=key,
                size_bytes=len(content),
                checksum=metadata.get("checksum"),
                metadata=metadata,
            ),
            data=content,
        )

    async def stat(self, key: str) -> ArchiveObjectInfo | None:
        """Get object metadata without downloading the body.

        Args:
            key: Object key

        Returns:
            ArchiveObjectInfo or None if the object does not exist
        """
        try:
            response = await self._call("head_object", Key=key)
        except _ObjectMissing:
            return None

        metadata = response.get("Metadata", {})
        return ArchiveObjectInfo(
            key=key,
            size_bytes=int(response.get("ContentLength", 0)),
            checksum=metadata.get("checksum"),
            metadata=metadata,
        )

    async def exists(self, key: str) -> bool:
        """Check whether an object exists."""
        return await self.stat(key) is not None

    async def delete(self, key: str) -> bool:
        """Delete an object.

        S3 deletes succeed for missing keys, so existence is checked first.

        Args:
            key: Object key

        Returns:
            True if an object was deleted, False if none existed
        """
        if not await self.exists(key):
            return False

        try:
            await self._call("delete_object", Key=key)
        except _ObjectMissing:
            return False

        logger.debug("Deleted archive object", extra={"key": key})
        return True
