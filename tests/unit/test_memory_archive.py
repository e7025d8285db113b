"""
Unit tests for the in-memory archive store.

Tests cover:
- Basic put/get/stat/exists/delete
- Idempotent overwrites
- Testing helpers (failure injection, corruption)
"""

import pytest

from dbaas.tierdb_server.archive import ArchiveStore, InMemoryArchiveStore, compute_checksum
from dbaas.tierdb_server.errors import TransientStoreError
from dbaas.tierdb_server.records import NOT_FOUND


class TestInMemoryArchiveStore:
    """Tests for InMemoryArchiveStore."""

    @pytest.fixture
    def archive(self):
        """Create a fresh archive store."""
        return InMemoryArchiveStore()

    def test_implements_protocol(self, archive):
        assert isinstance(archive, ArchiveStore)

    @pytest.mark.asyncio
    async def test_connect_close(self, archive):
        assert not archive.is_connected
        await archive.connect()
        assert archive.is_connected
        await archive.close()
        assert not archive.is_connected

    @pytest.mark.asyncio
    async def test_put_get(self, archive):
        info = await archive.put("records/R1.json", b"body", {"checksum": "sha256:abc"})
        assert info.size_bytes == 4
        assert info.checksum == "sha256:abc"

        obj = await archive.get("records/R1.json")
        assert obj.data == b"body"
        assert obj.info.metadata == {"checksum": "sha256:abc"}

    @pytest.mark.asyncio
    async def test_checksum_computed_when_absent(self, archive):
        info = await archive.put("k", b"body", {})
        assert info.checksum == compute_checksum(b"body")

    @pytest.mark.asyncio
    async def test_missing_key(self, archive):
        assert await archive.get("missing") is NOT_FOUND
        assert await archive.stat("missing") is None
        assert await archive.exists("missing") is False
        assert await archive.delete("missing") is False

    @pytest.mark.asyncio
    async def test_put_overwrites(self, archive):
        await archive.put("k", b"one", {})
        await archive.put("k", b"two", {})
        assert (await archive.get("k")).data == b"two"
        assert archive.get_object_count() == 1

    @pytest.mark.asyncio
    async def test_delete(self, archive):
        await archive.put("k", b"body", {})
        assert await archive.delete("k") is True
        assert await archive.exists("k") is False

    @pytest.mark.asyncio
    async def test_injected_failures(self, archive):
        """Injected failures fire the given number of times."""
        archive.inject_failure("put", TransientStoreError("slow", tier="archive"), times=2)

        with pytest.raises(TransientStoreError):
            await archive.put("k", b"body", {})
        with pytest.raises(TransientStoreError):
            await archive.put("k", b"body", {})
        await archive.put("k", b"body", {})

        assert archive.calls["put"] == 3

    @pytest.mark.asyncio
    async def test_clear_failures(self, archive):
        archive.inject_failure("get", TransientStoreError("slow", tier="archive"))
        archive.clear_failures()
        assert await archive.get("k") is NOT_FOUND

    @pytest.mark.asyncio
    async def test_corrupt_keeps_recorded_checksum(self, archive):
        info = await archive.put("k", b"body", {})
        archive.corrupt("k", b"bad body!")

        stat = await archive.stat("k")
        assert stat.checksum == info.checksum
        assert stat.size_bytes == len(b"bad body!")
        assert (await archive.get("k")).data == b"bad body!"
