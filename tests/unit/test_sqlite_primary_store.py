"""
Unit tests for the SQLite primary store.

Tests cover:
- Point put/get/delete
- Version bumps and status reset on write
- Keyset range scans with continuation tokens
- Compare-and-set status and conditional delete
- Checkpoints and leases
"""

import os
import tempfile

import pytest
import pytest_asyncio

from dbaas.tierdb_server.errors import InvalidContinuationToken, SystemicStoreUnavailable
from dbaas.tierdb_server.primary import (
    ContinuationToken,
    PrimaryStore,
    SqlitePrimaryStore,
    iter_scan,
)
from dbaas.tierdb_server.records import (
    NOT_FOUND,
    ArchiveStatus,
    Deleted,
    Found,
    Record,
    Tier,
)

BASE_TS = 1_700_000_000_000


def rec(record_id, ts=BASE_TS, payload=b"{}", partition_key=""):
    return Record(record_id=record_id, payload=payload, timestamp=ts, partition_key=partition_key)


class TestSqlitePrimaryStore:
    """Tests for SqlitePrimaryStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest_asyncio.fixture
    async def store(self, data_dir):
        """Create an initialized store."""
        store = SqlitePrimaryStore(os.path.join(data_dir, "primary.db"), wal_mode=False)
        await store.initialize()
        return store

    def test_implements_protocol(self, data_dir):
        assert isinstance(SqlitePrimaryStore(os.path.join(data_dir, "p.db")), PrimaryStore)

    @pytest.mark.asyncio
    async def test_uninitialized_store_is_unavailable(self, data_dir):
        """Operations before initialize() fail as systemic, not as NOT_FOUND."""
        store = SqlitePrimaryStore(os.path.join(data_dir, "missing.db"))
        with pytest.raises(SystemicStoreUnavailable):
            await store.get("R1")

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        await store.initialize()
        assert await store.count_by_status() == {"live": 0, "pending": 0}

    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        stored = await store.put(rec("R1", payload=b'{"amount": 42}'))
        assert stored.version == 1
        assert stored.status == ArchiveStatus.LIVE

        result = await store.get("R1")
        assert isinstance(result, Found)
        assert result.tier == Tier.HOT
        assert result.record.payload == b'{"amount": 42}'
        assert result.record.timestamp == BASE_TS

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("nope") is NOT_FOUND

    @pytest.mark.asyncio
    async def test_record_id_is_unique_across_partition_keys(self, store):
        """A second partition key updates the same record instead of adding a row."""
        first = await store.put(rec("R1", payload=b"A", partition_key="p1"))
        second = await store.put(rec("R1", payload=b"B", partition_key="p2"))

        assert second.version == first.version + 1
        assert await store.count_by_status() == {"live": 1, "pending": 0}

        result = await store.get("R1")
        assert result.record.payload == b"B"
        assert result.record.partition_key == "p2"

        page = await store.scan(BASE_TS + 1)
        assert [r.record_id for r in page.records] == ["R1"]

    @pytest.mark.asyncio
    async def test_get_and_delete_by_id_with_custom_partition_key(self, store):
        await store.put(rec("R1", partition_key="tenant-a"))

        result = await store.get("R1")
        assert isinstance(result, Found)
        assert result.record.partition_key == "tenant-a"

        assert isinstance(await store.delete("R1"), Deleted)
        assert await store.get("R1") is NOT_FOUND

    @pytest.mark.asyncio
    async def test_corrupt_database_is_unavailable(self, data_dir):
        """A file that is not a SQLite database fails as systemic."""
        path = os.path.join(data_dir, "corrupt.db")
        with open(path, "wb") as f:
            f.write(b"this is not a sqlite database\n" * 64)

        store = SqlitePrimaryStore(path, wal_mode=False)
        with pytest.raises(SystemicStoreUnavailable):
            await store.get("R1")
        with pytest.raises(SystemicStoreUnavailable):
            await store.count_by_status()

    @pytest.mark.asyncio
    async def test_put_bumps_version_and_resets_status(self, store):
        """Every write bumps the version and makes the record live."""
        first = await store.put(rec("R1"))
        await store.mark_pending("R1", first.version)

        second = await store.put(rec("R1", payload=b"new"))
        assert second.version == first.version + 1

        result = await store.get("R1")
        assert result.record.status == ArchiveStatus.LIVE
        assert result.record.payload == b"new"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put(rec("R1"))
        result = await store.delete("R1")
        assert isinstance(result, Deleted)
        assert result.tiers == (Tier.HOT,)
        assert await store.get("R1") is NOT_FOUND
        assert await store.delete("R1") is NOT_FOUND

    @pytest.mark.asyncio
    async def test_scan_filters_by_cutoff_and_orders(self, store):
        """Only records older than the cutoff come back, oldest first."""
        await store.put(rec("new", ts=BASE_TS + 10))
        await store.put(rec("b", ts=BASE_TS + 1))
        await store.put(rec("a", ts=BASE_TS + 1))
        await store.put(rec("old", ts=BASE_TS))

        page = await store.scan(BASE_TS + 10)
        assert [r.record_id for r in page.records] == ["old", "a", "b"]
        assert page.continuation is None

    @pytest.mark.asyncio
    async def test_scan_pages_with_continuation(self, store):
        for i in range(7):
            await store.put(rec(f"R{i}", ts=BASE_TS + i))

        seen = []
        token = None
        while True:
            page = await store.scan(BASE_TS + 100, limit=3, continuation=token)
            seen.extend(r.record_id for r in page.records)
            if page.continuation is None:
                break
            token = page.continuation

        assert seen == [f"R{i}" for i in range(7)]

    @pytest.mark.asyncio
    async def test_scan_continuation_survives_equal_timestamps(self, store):
        """Records sharing a timestamp are neither skipped nor repeated."""
        for i in range(5):
            await store.put(rec(f"R{i}", ts=BASE_TS))

        first = await store.scan(BASE_TS + 1, limit=2)
        rest = await store.scan(BASE_TS + 1, limit=10, continuation=first.continuation)

        ids = [r.record_id for r in first.records] + [r.record_id for r in rest.records]
        assert ids == ["R0", "R1", "R2", "R3", "R4"]

    @pytest.mark.asyncio
    async def test_scan_status_filter(self, store):
        a = await store.put(rec("a"))
        await store.put(rec("b"))
        await store.mark_pending("a", a.version)

        page = await store.scan(BASE_TS + 1, statuses=[ArchiveStatus.PENDING])
        assert [r.record_id for r in page.records] == ["a"]

        assert (await store.scan(BASE_TS + 1, statuses=[])).records == []

    @pytest.mark.asyncio
    async def test_scan_rejects_malformed_token(self, store):
        with pytest.raises(InvalidContinuationToken):
            await store.scan(BASE_TS, continuation="not-a-token")

    @pytest.mark.asyncio
    async def test_iter_scan_is_lazy_over_pages(self, store):
        for i in range(5):
            await store.put(rec(f"R{i}", ts=BASE_TS + i))

        ids = [r.record_id async for r in iter_scan(store, BASE_TS + 100, page_size=2)]
        assert ids == ["R0", "R1", "R2", "R3", "R4"]

    @pytest.mark.asyncio
    async def test_mark_pending_compare_and_set(self, store):
        stored = await store.put(rec("R1"))

        assert await store.mark_pending("R1", stored.version + 1) is False
        assert await store.mark_pending("R1", stored.version) is True
        # Re-marking a pending record with the same version succeeds
        assert await store.mark_pending("R1", stored.version) is True
        assert await store.mark_pending("missing", 1) is False

        result = await store.get("R1")
        assert result.record.status == ArchiveStatus.PENDING

    @pytest.mark.asyncio
    async def test_delete_if_version_keeps_newer_write(self, store):
        """A conditional delete never removes a newer write."""
        first = await store.put(rec("R1"))
        await store.put(rec("R1", payload=b"newer"))

        assert await store.delete_if_version("R1", first.version) is False
        result = await store.get("R1")
        assert result.record.payload == b"newer"

        assert await store.delete_if_version("R1", first.version + 1) is True
        assert await store.get("R1") is NOT_FOUND

    @pytest.mark.asyncio
    async def test_checkpoint_roundtrip_and_clear(self, store):
        assert await store.load_checkpoint("archival") is None

        token = ContinuationToken(BASE_TS, "R1").encode()
        await store.save_checkpoint("archival", token)
        assert await store.load_checkpoint("archival") == token

        await store.save_checkpoint("archival", None)
        assert await store.load_checkpoint("archival") is None

    @pytest.mark.asyncio
    async def test_lease_is_exclusive(self, store):
        assert await store.acquire_lease("archival", "worker-a", 60_000) is True
        assert await store.acquire_lease("archival", "worker-b", 60_000) is False
        # Holder can renew
        assert await store.acquire_lease("archival", "worker-a", 60_000) is True

        await store.release_lease("archival", "worker-a")
        assert await store.acquire_lease("archival", "worker-b", 60_000) is True

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken(self, store):
        assert await store.acquire_lease("archival", "worker-a", -1) is True
        assert await store.acquire_lease("archival", "worker-b", 60_000) is True

    @pytest.mark.asyncio
    async def test_release_by_non_owner_is_ignored(self, store):
        await store.acquire_lease("archival", "worker-a", 60_000)
        await store.release_lease("archival", "worker-b")
        assert await store.acquire_lease("archival", "worker-b", 60_000) is False

    @pytest.mark.asyncio
    async def test_count_by_status(self, store):
        a = await store.put(rec("a"))
        await store.put(rec("b"))
        await store.mark_pending("a", a.version)
        assert await store.count_by_status() == {"live": 1, "pending": 1}


class TestContinuationToken:
    """Tests for ContinuationToken."""

    def test_encode_decode(self):
        token = ContinuationToken(BASE_TS, "tenant/a R 1")
        assert ContinuationToken.decode(token.encode()) == token

    def test_after_record(self):
        token = ContinuationToken.after(rec("R1", partition_key="p"))
        assert token == ContinuationToken(BASE_TS, "R1")

    @pytest.mark.parametrize("bad", ["", "%%%", "bm90IGpzb24", "WzEsMl0"])
    def test_malformed(self, bad):
        with pytest.raises(InvalidContinuationToken):
            ContinuationToken.decode(bad)
