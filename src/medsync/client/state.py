"""Local durable store for cached records and the sync queue.

This module provides:
- LocalStore: SQLite-based storage shared by the repository and the worker

Architecture:
    One table per stored entity (see entities.ENTITIES), one sync_queue
    table and a key-value sync_state table. Every public method is a single
    SQLite transaction, so a crash mid-write never leaves a half-applied
    change. WAL journaling keeps acknowledged writes durable.

    Queue order is the insertion order, tracked by a monotonically
    increasing ``seq`` column rather than by ``createdAt`` (wall-clock
    timestamps can tie or go backwards).
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from medsync.client.entities import get_stored_entity, stored_entities
from medsync.client.records import Record, now_iso
from medsync.client.sync.types import QueueItem

logger = logging.getLogger(__name__)

# Entities pruned by clear_old_data().
PRUNABLE_ENTITIES = ("medications", "appointments", "treatments")


class LocalStore:
    """SQLite-based durable store.

    Thread-safe: all access goes through one connection guarded by an RLock.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create or migrate) the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self._db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode, explicit transactions
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for crash safety and concurrent readers
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._create_tables()
        self._migrate()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        for spec in stored_entities():
            columns = ",\n".join(f"{name} TEXT" for name in spec.fields)
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {spec.table} (
                    id TEXT PRIMARY KEY,
                    {columns},
                    patientProfileId TEXT NOT NULL,
                    createdAt TEXT NOT NULL,
                    updatedAt TEXT NOT NULL,
                    isOffline INTEGER DEFAULT 0,
                    syncStatus TEXT DEFAULT 'synced'
                )
            """)
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{spec.table}_scope "
                f"ON {spec.table}(patientProfileId)"
            )

        self._conn.executescript("""
            -- Pending mutations, drained in seq order
            CREATE TABLE IF NOT EXISTS sync_queue (
                id TEXT PRIMARY KEY,
                seq INTEGER NOT NULL,
                action TEXT NOT NULL,
                entity TEXT NOT NULL,
                data TEXT NOT NULL,
                createdAt TEXT NOT NULL,
                retryCount INTEGER DEFAULT 0
            );
            CREATE INDEX IF NOT EXISTS idx_sync_queue_seq ON sync_queue(seq);

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def _migrate(self) -> None:
        """Bring databases written by older versions up to date.

        - Adds entity columns missing from existing tables.
        - Backfills NULL createdAt/updatedAt from the other timestamp.
        """
        with self._transaction():
            for spec in stored_entities():
                existing = {
                    row["name"]
                    for row in self._conn.execute(f"PRAGMA table_info({spec.table})")
                }
                for name in spec.fields:
                    if name not in existing:
                        self._conn.execute(
                            f"ALTER TABLE {spec.table} ADD COLUMN {name} TEXT"
                        )
                        logger.info("Added column %s.%s", spec.table, name)

                now = now_iso()
                cursor = self._conn.execute(
                    f"""
                    UPDATE {spec.table} SET
                        createdAt = COALESCE(createdAt, updatedAt, ?),
                        updatedAt = COALESCE(updatedAt, createdAt, ?)
                    WHERE createdAt IS NULL OR updatedAt IS NULL
                    """,
                    (now, now),
                )
                if cursor.rowcount > 0:
                    logger.info(
                        "Backfilled timestamps of %d %s rows",
                        cursor.rowcount,
                        spec.name,
                    )

    def _transaction(self) -> _Transaction:
        """Open an explicit write transaction (held under the lock)."""
        return _Transaction(self._conn, self._lock)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # === Record operations ===

    def put(self, entity: str, record: Record) -> None:
        """Upsert a record by id (all fields overwritten).

        Args:
            entity: Stored entity tag.
            record: Record to write.
        """
        spec = get_stored_entity(entity)
        row = record.to_row(spec)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)

        with self._transaction():
            self._conn.execute(
                f"INSERT OR REPLACE INTO {spec.table} ({columns}) VALUES ({placeholders})",
                list(row.values()),
            )

    def put_many(self, entity: str, records: list[Record]) -> None:
        """Upsert several records in one transaction."""
        spec = get_stored_entity(entity)
        if not records:
            return

        rows = [record.to_row(spec) for record in records]
        columns = ", ".join(rows[0])
        placeholders = ", ".join("?" for _ in rows[0])

        with self._transaction():
            self._conn.executemany(
                f"INSERT OR REPLACE INTO {spec.table} ({columns}) VALUES ({placeholders})",
                [list(row.values()) for row in rows],
            )

    def get(self, entity: str, record_id: str) -> Record | None:
        """Get a record by id.

        Returns:
            Record if found, None otherwise.
        """
        spec = get_stored_entity(entity)
        with self._lock:
            row = self._conn.execute(
                f"SELECT * FROM {spec.table} WHERE id = ?",
                (record_id,),
            ).fetchone()
        if row is None:
            return None
        return Record.from_row(row, spec)

    def list(self, entity: str, scope_id: str) -> list[Record]:
        """List records of an owner scope, in the entity's display order.

        Args:
            entity: Stored entity tag.
            scope_id: Patient profile id.
        """
        spec = get_stored_entity(entity)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM {spec.table} WHERE patientProfileId = ? "
                f"ORDER BY {spec.order_by}",
                (scope_id,),
            ).fetchall()
        return [Record.from_row(row, spec) for row in rows]

    def delete(self, entity: str, record_id: str) -> bool:
        """Delete a record. Deleting a missing id is not an error.

        Returns:
            True if a row was removed.
        """
        spec = get_stored_entity(entity)
        with self._transaction():
            cursor = self._conn.execute(
                f"DELETE FROM {spec.table} WHERE id = ?", (record_id,)
            )
        return cursor.rowcount > 0

    # === Queue operations ===

    def enqueue(self, item: QueueItem) -> None:
        """Append an item to the end of the queue."""
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO sync_queue (id, seq, action, entity, data, createdAt, retryCount)
                VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM sync_queue), ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.action.value,
                    item.entity,
                    json.dumps(item.payload),
                    item.created_at,
                    item.retry_count,
                ),
            )
        logger.debug("Enqueued %r", item)

    def drainable(self) -> list[QueueItem]:
        """Get every queued item in FIFO (insertion) order."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM sync_queue ORDER BY seq ASC"
            ).fetchall()
        return [QueueItem.from_row(row) for row in rows]

    def get_queue_item(self, item_id: str) -> QueueItem | None:
        """Get a queued item by id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sync_queue WHERE id = ?", (item_id,)
            ).fetchone()
        return QueueItem.from_row(row) if row else None

    def dequeue(self, item_id: str) -> bool:
        """Remove a queued item.

        Returns:
            True if the item existed.
        """
        with self._transaction():
            cursor = self._conn.execute(
                "DELETE FROM sync_queue WHERE id = ?", (item_id,)
            )
        return cursor.rowcount > 0

    def bump_retry(self, item_id: str, retry_count: int) -> None:
        """Set the retry counter of a queued item in place."""
        with self._transaction():
            self._conn.execute(
                "UPDATE sync_queue SET retryCount = ? WHERE id = ?",
                (retry_count, item_id),
            )

    def rename_queued_record(self, entity: str, old_id: str, new_id: str) -> int:
        """Point queued changes of a record at its server-assigned id.

        Returns:
            Number of queue items rewritten.
        """
        renamed = 0
        with self._transaction():
            rows = self._conn.execute(
                "SELECT id, data FROM sync_queue WHERE entity = ?", (entity,)
            ).fetchall()
            for row in rows:
                data = json.loads(row["data"])
                if data.get("id") != old_id:
                    continue
                data["id"] = new_id
                self._conn.execute(
                    "UPDATE sync_queue SET data = ? WHERE id = ?",
                    (json.dumps(data), row["id"]),
                )
                renamed += 1
        return renamed

    def queue_length(self) -> int:
        """Get the number of queued items."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS n FROM sync_queue").fetchone()
        return int(row["n"])

    def clear_queue(self) -> int:
        """Remove every queued item.

        Returns:
            Number of items removed.
        """
        with self._transaction():
            cursor = self._conn.execute("DELETE FROM sync_queue")
        logger.info("Cleared %d items from sync queue", cursor.rowcount)
        return cursor.rowcount

    # === Maintenance ===

    def clear_all(self) -> None:
        """Wipe every table (used on logout)."""
        with self._transaction():
            for spec in stored_entities():
                self._conn.execute(f"DELETE FROM {spec.table}")
            self._conn.execute("DELETE FROM sync_queue")
            self._conn.execute("DELETE FROM sync_state")
        logger.info("Local store cleared")

    def clear_old_data(self, days_old: int = 30) -> int:
        """Drop confirmed records created before the cutoff.

        Offline records are always kept.

        Returns:
            Number of rows removed.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
        cutoff_str = cutoff.strftime("%Y-%m-%dT%H:%M:%S.000Z")
        removed = 0
        with self._transaction():
            for name in PRUNABLE_ENTITIES:
                spec = get_stored_entity(name)
                cursor = self._conn.execute(
                    f"DELETE FROM {spec.table} WHERE createdAt < ? AND isOffline = 0",
                    (cutoff_str,),
                )
                removed += cursor.rowcount
        logger.info("Pruned %d records older than %d days", removed, days_old)
        return removed

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._transaction():
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_last_sync_at(self) -> str | None:
        """Get ISO timestamp of the last completed drain."""
        return self.get_state("last_sync_at")

    def set_last_sync_at(self, timestamp: str) -> None:
        """Set ISO timestamp of the last completed drain."""
        self.set_state("last_sync_at", timestamp)


class _Transaction:
    """BEGIN IMMEDIATE ... COMMIT/ROLLBACK, holding the store lock.

    Nested use inside an open transaction joins the outer one.
    """

    def __init__(self, conn: sqlite3.Connection, lock: threading.RLock) -> None:
        self._conn = conn
        self._lock = lock
        self._owner = False

    def __enter__(self) -> sqlite3.Connection:
        self._lock.acquire()
        if not self._conn.in_transaction:
            self._conn.execute("BEGIN IMMEDIATE")
            self._owner = True
        return self._conn

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        try:
            if self._owner:
                if exc_type is None:
                    self._conn.execute("COMMIT")
                else:
                    self._conn.execute("ROLLBACK")
        finally:
            self._lock.release()
