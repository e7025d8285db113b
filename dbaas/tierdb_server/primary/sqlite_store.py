"""
SQLite primary store for TierDB.

This module manages the SQLite database that holds the hot tier:
- Records with their payloads and archival status
- A timestamp index that drives archival range scans
- Archival checkpoints (persisted scan continuation tokens)
- Archival leases (single active engine run across processes)

Invariants:
    - record_id is the only addressing key; one row per id
    - All writes run in a single BEGIN IMMEDIATE transaction
    - put() always resets status to 'live' and bumps version
    - Status updates and engine deletes are conditional on version
    - Scans use keyset pagination on idx_records_ts, never OFFSET

How to change safely:
    - Schema migrations must be backward compatible
    - Never make mark_pending() or delete_if_version() unconditional
    - Use transactions for all write operations

Table schema:
    records:
        - record_id TEXT PRIMARY KEY
        - partition_key TEXT (routing metadata, not part of the key)
        - timestamp INTEGER (Unix ms)
        - payload BLOB
        - schema_version INTEGER
        - status TEXT ('live' | 'pending')
        - version INTEGER
        - updated_at INTEGER (Unix ms)
        - INDEX on (timestamp, record_id)

    archival_checkpoints:
        - name TEXT PRIMARY KEY
        - token TEXT
        - updated_at INTEGER

    archival_leases:
        - name TEXT PRIMARY KEY
        - owner TEXT
        - expires_at INTEGER
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from ..errors import SystemicStoreUnavailable, TransientStoreError
from ..records import (
    NOT_FOUND,
    ArchiveStatus,
    Deleted,
    DeleteResult,
    Found,
    LookupResult,
    Record,
    Tier,
    now_ms,
)
from .base import ELIGIBLE_STATUSES, ContinuationToken, ScanPage

logger = logging.getLogger(__name__)

TIER = "primary"


class SqlitePrimaryStore:
    """SQLite-backed primary store.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqlitePrimaryStore("/var/lib/tierdb/primary.db")
        >>> await store.initialize()
        >>> stored = await store.put(Record(record_id="R1", payload=b'{"amount": 42}'))
        >>> stored.version
        1
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the primary store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Args:
            create: Whether to create the database file if missing

        Yields:
            SQLite connection

        Raises:
            SystemicStoreUnavailable: If the database is missing, cannot be
                opened or fails with any error other than lock contention
            TransientStoreError: If the database stays locked past the busy timeout
        """
        if not create and not self.db_path.exists():
            raise SystemicStoreUnavailable(
                f"Primary store not initialized: {self.db_path}", tier=TIER
            )

        if create:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise SystemicStoreUnavailable(f"Cannot open primary store: {e}", tier=TIER) from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "locked" in message or "busy" in message:
                raise TransientStoreError(f"Primary store busy: {e}", tier=TIER) from e
            raise SystemicStoreUnavailable(f"Primary store failure: {e}", tier=TIER) from e
        except sqlite3.Error as e:
            # Corrupt or non-database files surface as DatabaseError
            raise SystemicStoreUnavailable(f"Primary store failure: {e}", tier=TIER) from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Hot tier records
            CREATE TABLE IF NOT EXISTS records (
                record_id TEXT PRIMARY KEY,
                partition_key TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                payload BLOB NOT NULL,
                schema_version INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'live',
                version INTEGER NOT NULL DEFAULT 1,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_ts
                ON records(timestamp, record_id);

            -- Archival engine progress between invocations
            CREATE TABLE IF NOT EXISTS archival_checkpoints (
                name TEXT PRIMARY KEY,
                token TEXT,
                updated_at INTEGER NOT NULL
            );

            -- Single active archival run across processes
            CREATE TABLE IF NOT EXISTS archival_leases (
                name TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                expires_at INTEGER NOT NULL
            );

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection(create=True) as conn:
                self._create_schema(conn)
        logger.info(f"Initialized primary store: {self.db_path}")

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return Record(
            record_id=row["record_id"],
            payload=bytes(row["payload"]),
            partition_key=row["partition_key"],
            timestamp=row["timestamp"],
            schema_version=row["schema_version"],
            status=ArchiveStatus(row["status"]),
            version=row["version"],
        )

    async def put(self, record: Record) -> Record:
        """Insert or replace a record.

        A write to an id that was archived earlier re-creates it here as
        'live'; the newer write wins over the archived copy. Writing an
        existing id under a different partition key updates that record
        and moves it to the new partition key.

        Args:
            record: Record to store (status and version are ignored)

        Returns:
            The stored record with status LIVE and its new version
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    """
                    INSERT INTO records (record_id, partition_key, timestamp, payload,
                                         schema_version, status, version, updated_at)
                    VALUES (?, ?, ?, ?, ?, 'live', 1, ?)
                    ON CONFLICT (record_id) DO UPDATE SET
                        partition_key = excluded.partition_key,
                        timestamp = excluded.timestamp,
                        payload = excluded.payload,
                        schema_version = excluded.schema_version,
                        status = 'live',
                        version = records.version + 1,
                        updated_at = excluded.updated_at
                    """,
                    (
                        record.record_id,
                        record.partition_key,
                        record.timestamp,
                        record.payload,
                        record.schema_version,
                        now_ms(),
                    ),
                )
                cursor = conn.execute(
                    "SELECT version FROM records WHERE record_id = ?",
                    (record.record_id,),
                )
                version = cursor.fetchone()["version"]

                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Stored record",
            extra={
                "record_id": record.record_id,
                "partition_key": record.partition_key,
                "version": version,
            },
        )

        return Record(
            record_id=record.record_id,
            payload=record.payload,
            partition_key=record.partition_key,
            timestamp=record.timestamp,
            schema_version=record.schema_version,
            status=ArchiveStatus.LIVE,
            version=version,
        )

    async def get(self, record_id: str) -> LookupResult:
        """Get a record by id.

        Args:
            record_id: Record identifier

        Returns:
            Found or NOT_FOUND
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM records WHERE record_id = ?",
                (record_id,),
            )
            row = cursor.fetchone()
            if not row:
                return NOT_FOUND

            return Found(record=self._row_to_record(row), tier=Tier.HOT)

    async def delete(self, record_id: str) -> DeleteResult:
        """Delete a record unconditionally.

        Args:
            record_id: Record identifier

        Returns:
            Deleted or NOT_FOUND
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE record_id = ?",
                (record_id,),
            )
            if cursor.rowcount > 0:
                return Deleted(record_id=record_id, tiers=(Tier.HOT,))
            return NOT_FOUND

    async def scan(
        self,
        cutoff_ms: int,
        statuses: Sequence[ArchiveStatus] = ELIGIBLE_STATUSES,
        limit: int = 200,
        continuation: str | None = None,
    ) -> ScanPage:
        """Get one page of records older than cutoff_ms.

        Args:
            cutoff_ms: Exclusive upper bound on timestamp
            statuses: Statuses to include
            limit: Maximum records in the page
            continuation: Token returned by a previous page

        Returns:
            ScanPage; continuation is None when no more records can follow
        """
        if not statuses:
            return ScanPage()

        query = "SELECT * FROM records WHERE timestamp < ?"
        params: list[object] = [cutoff_ms]

        if continuation is not None:
            after = ContinuationToken.decode(continuation)
            query += " AND (timestamp, record_id) > (?, ?)"
            params.extend([after.timestamp, after.record_id])

        placeholders = ", ".join("?" for _ in statuses)
        query += f" AND status IN ({placeholders})"
        params.extend(s.value for s in statuses)

        query += " ORDER BY timestamp, record_id LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            records = [self._row_to_record(row) for row in cursor.fetchall()]

        next_token = None
        if len(records) == limit:
            next_token = ContinuationToken.after(records[-1]).encode()

        return ScanPage(records=records, continuation=next_token)

    async def mark_pending(self, record_id: str, expected_version: int) -> bool:
        """Compare-and-set the status to 'pending'.

        Args:
            record_id: Record identifier
            expected_version: Version observed when the record was scanned

        Returns:
            True if the status was set, False if the record changed or vanished
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE records SET status = 'pending'
                WHERE record_id = ? AND version = ?
                AND status IN ('live', 'pending')
                """,
                (record_id, expected_version),
            )
            return cursor.rowcount > 0

    async def delete_if_version(self, record_id: str, expected_version: int) -> bool:
        """Delete a record only if no newer write has landed.

        Args:
            record_id: Record identifier
            expected_version: Version observed when the record was scanned

        Returns:
            True if deleted, False if the record changed or vanished
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE record_id = ? AND version = ?",
                (record_id, expected_version),
            )
            return cursor.rowcount > 0

    async def load_checkpoint(self, name: str) -> str | None:
        """Load a saved continuation token.

        Args:
            name: Checkpoint name

        Returns:
            Token string or None
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT token FROM archival_checkpoints WHERE name = ?",
                (name,),
            )
            row = cursor.fetchone()
            return row["token"] if row else None

    async def save_checkpoint(self, name: str, token: str | None) -> None:
        """Save (or clear, with None) a continuation token.

        Args:
            name: Checkpoint name
            token: Token to persist
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO archival_checkpoints (name, token, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (name) DO UPDATE SET
                    token = excluded.token,
                    updated_at = excluded.updated_at
                """,
                (name, token, now_ms()),
            )

    async def acquire_lease(self, name: str, owner: str, ttl_ms: int) -> bool:
        """Take a named lease.

        Succeeds if the lease is free, expired, or already held by owner
        (which renews it).

        Args:
            name: Lease name
            owner: Unique owner identifier
            ttl_ms: Lease lifetime

        Returns:
            True if owner now holds the lease
        """
        now = now_ms()
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    "SELECT owner, expires_at FROM archival_leases WHERE name = ?",
                    (name,),
                )
                row = cursor.fetchone()
                if row and row["owner"] != owner and row["expires_at"] > now:
                    conn.execute("ROLLBACK")
                    return False

                conn.execute(
                    "INSERT OR REPLACE INTO archival_leases (name, owner, expires_at) "
                    "VALUES (?, ?, ?)",
                    (name, owner, now + ttl_ms),
                )
                conn.execute("COMMIT")
                return True

            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def release_lease(self, name: str, owner: str) -> None:
        """Release a lease if owner still holds it."""
        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM archival_leases WHERE name = ? AND owner = ?",
                (name, owner),
            )

    async def count_by_status(self) -> dict[str, int]:
        """Get record counts per status.

        Returns:
            Dictionary mapping status value to count
        """
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT status, COUNT(*) AS n FROM records GROUP BY status")
            counts = {s.value: 0 for s in ELIGIBLE_STATUSES}
            for row in cursor.fetchall():
                counts[row["status"]] = row["n"]
            return counts
