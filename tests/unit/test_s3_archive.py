"""
Unit tests for the S3 archive store.

Tests cover:
- ClientError mapping onto the error taxonomy
- Request shapes against a stub client
- Not-found handling for get/stat/delete

The aiobotocore client is replaced by a stub object, so no network or
MinIO is needed.
"""

import asyncio

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from dbaas.tierdb_server.archive.s3 import S3ArchiveStore, _ObjectMissing, _translate_client_error
from dbaas.tierdb_server.config import S3Config
from dbaas.tierdb_server.errors import (
    RecordStoreError,
    SystemicStoreUnavailable,
    TransientStoreError,
)
from dbaas.tierdb_server.records import NOT_FOUND


def client_error(code, status=400, operation="HeadObject"):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class StubBody:
    def __init__(self, data):
        self.data = data

    async def read(self):
        return self.data


class StubS3Client:
    """Records requests and serves objects from a dict."""

    def __init__(self):
        self.objects = {}
        self.requests = []
        self.errors = {}

    def _check(self, operation, kwargs):
        self.requests.append((operation, kwargs))
        if operation in self.errors:
            raise self.errors[operation]

    async def put_object(self, **kwargs):
        self._check("put_object", kwargs)
        self.objects[kwargs["Key"]] = (kwargs["Body"], kwargs["Metadata"])
        return {"ETag": '"etag"'}

    async def get_object(self, **kwargs):
        self._check("get_object", kwargs)
        if kwargs["Key"] not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        body, metadata = self.objects[kwargs["Key"]]
        return {"Body": StubBody(body), "Metadata": metadata}

    async def head_object(self, **kwargs):
        self._check("head_object", kwargs)
        if kwargs["Key"] not in self.objects:
            raise client_error("404", 404, "HeadObject")
        body, metadata = self.objects[kwargs["Key"]]
        return {"ContentLength": len(body), "Metadata": metadata}

    async def delete_object(self, **kwargs):
        self._check("delete_object", kwargs)
        self.objects.pop(kwargs["Key"], None)
        return {}


class TestTranslateClientError:
    """Tests for ClientError mapping."""

    @pytest.mark.parametrize("code", ["NoSuchKey", "404", "NotFound"])
    def test_not_found_codes(self, code):
        assert isinstance(_translate_client_error(client_error(code, 404), "head"), _ObjectMissing)

    @pytest.mark.parametrize("code", ["NoSuchBucket", "AccessDenied", "InvalidAccessKeyId"])
    def test_systemic_codes(self, code):
        error = _translate_client_error(client_error(code, 403), "put_object")
        assert isinstance(error, SystemicStoreUnavailable)
        assert error.tier == "archive"

    @pytest.mark.parametrize("code", ["SlowDown", "RequestTimeout", "InternalError", "503"])
    def test_transient_codes(self, code):
        error = _translate_client_error(client_error(code, 503), "put_object")
        assert isinstance(error, TransientStoreError)
        assert error.operation == "put_object"

    def test_unknown_5xx_is_transient(self):
        error = _translate_client_error(client_error("Weird", 500), "get_object")
        assert isinstance(error, TransientStoreError)

    def test_unknown_4xx_is_plain_store_error(self):
        error = _translate_client_error(client_error("InvalidArgument", 400), "put_object")
        assert type(error) is RecordStoreError
        assert error.code == "ARCHIVE_ERROR"


class TestS3ArchiveStore:
    """Tests for S3ArchiveStore against a stub client."""

    @pytest.fixture
    def client(self):
        return StubS3Client()

    @pytest.fixture
    def archive(self, client):
        store = S3ArchiveStore(S3Config(bucket="test-bucket", timeout_seconds=1.0))
        store._s3_client = client
        return store

    @pytest.mark.asyncio
    async def test_not_connected_is_systemic(self):
        store = S3ArchiveStore(S3Config())
        with pytest.raises(SystemicStoreUnavailable):
            await store.stat("records/R1.json")

    @pytest.mark.asyncio
    async def test_put_sends_bucket_body_and_metadata(self, archive, client):
        info = await archive.put("records/R1.json", b"body", {"checksum": "sha256:abc"})

        operation, kwargs = client.requests[-1]
        assert operation == "put_object"
        assert kwargs["Bucket"] == "test-bucket"
        assert kwargs["Body"] == b"body"
        assert kwargs["ContentType"] == "application/json"
        assert kwargs["Metadata"] == {"checksum": "sha256:abc"}
        assert info.checksum == "sha256:abc"
        assert info.size_bytes == 4

    @pytest.mark.asyncio
    async def test_get_and_stat(self, archive):
        await archive.put("k", b"body", {"checksum": "sha256:abc"})

        obj = await archive.get("k")
        assert obj.data == b"body"
        assert obj.info.checksum == "sha256:abc"

        info = await archive.stat("k")
        assert info.size_bytes == 4
        assert info.checksum == "sha256:abc"
        assert await archive.exists("k") is True

    @pytest.mark.asyncio
    async def test_missing_objects(self, archive):
        assert await archive.get("missing") is NOT_FOUND
        assert await archive.stat("missing") is None
        assert await archive.exists("missing") is False

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, archive, client):
        await archive.put("k", b"body", {})
        assert await archive.delete("k") is True
        assert await archive.delete("k") is False
        assert [op for op, _ in client.requests].count("delete_object") == 1

    @pytest.mark.asyncio
    async def test_throttling_is_transient(self, archive, client):
        client.errors["put_object"] = client_error("SlowDown", 503, "PutObject")
        with pytest.raises(TransientStoreError):
            await archive.put("k", b"body", {})

    @pytest.mark.asyncio
    async def test_missing_bucket_is_systemic(self, archive, client):
        client.errors["head_object"] = client_error("NoSuchBucket", 404, "HeadObject")
        with pytest.raises(SystemicStoreUnavailable):
            await archive.stat("k")

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_is_systemic(self, archive, client):
        client.errors["get_object"] = EndpointConnectionError(endpoint_url="http://minio:9000")
        with pytest.raises(SystemicStoreUnavailable):
            await archive.get("k")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, archive, client):
        async def hang(**kwargs):
            await asyncio.sleep(10)

        client.head_object = hang
        archive.timeout_seconds = 0.01
        with pytest.raises(TransientStoreError, match="timed out"):
            await archive.stat("k")
