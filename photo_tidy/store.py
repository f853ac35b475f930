"""SQLite persistence for the inventory, the plan and the operation log."""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional
import logging

from .config import SCHEMA_VERSION
from .errors import StoreError
from .models import LogStage, MediaRecord, OperationLogEntry, PlanItem, PlanSummary
from .utils import ensure_directory

logger = logging.getLogger(__name__)

INVENTORY = 'inventory'
PLAN = 'plan'
OPERATION_LOG = 'operation_log'

# Forward migrations keyed by the database user_version they produce.
MIGRATIONS = {
    1: """
        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS media_inventory (
            path TEXT PRIMARY KEY,
            size INTEGER NOT NULL,
            mtime REAL NOT NULL,
            content_hash TEXT NOT NULL,
            legacy_hash TEXT,
            capture_timestamp TEXT NOT NULL,
            timestamp_source TEXT NOT NULL,
            camera_make TEXT,
            camera_model TEXT,
            artist TEXT,
            schema_version INTEGER NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS plan_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            generated_at TEXT NOT NULL,
            position INTEGER NOT NULL,
            file_hash TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            origin_file_name TEXT NOT NULL,
            origin_full_path TEXT NOT NULL,
            new_file_name TEXT NOT NULL,
            new_path TEXT NOT NULL,
            is_duplicate INTEGER NOT NULL DEFAULT 0,
            schema_version INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS operation_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            plan_item_ref INTEGER NOT NULL,
            stage TEXT NOT NULL,
            operation TEXT NOT NULL,
            original_path TEXT NOT NULL,
            destination_path TEXT NOT NULL,
            content_hash TEXT NOT NULL,
            error TEXT,
            timestamp TEXT NOT NULL,
            schema_version INTEGER NOT NULL
        );

        CREATE TRIGGER IF NOT EXISTS operation_log_no_update
        BEFORE UPDATE ON operation_log
        BEGIN
            SELECT RAISE(ABORT, 'operation_log is append-only');
        END;

        CREATE TRIGGER IF NOT EXISTS operation_log_no_delete
        BEFORE DELETE ON operation_log
        BEGIN
            SELECT RAISE(ABORT, 'operation_log is append-only');
        END;

        CREATE INDEX IF NOT EXISTS idx_media_inventory_hash ON media_inventory(content_hash, size);
        CREATE INDEX IF NOT EXISTS idx_plan_entries_position ON plan_entries(position);
        CREATE INDEX IF NOT EXISTS idx_operation_log_ref ON operation_log(plan_item_ref);
    """,
}

DB_VERSION = max(MIGRATIONS)


class Store:
    """Single SQLite database behind the scan, plan and execution stages.

    One connection is shared between threads and guarded by a lock. Writes run
    in ``BEGIN IMMEDIATE`` transactions, so readers keep seeing the previous
    committed state until a write finishes. Every sqlite3 failure surfaces as
    StoreError.
    """

    def __init__(self, database_path: Path, schema_version: int = SCHEMA_VERSION):
        self.database_path = Path(database_path)
        self.schema_version = schema_version
        self._lock = threading.RLock()
        self._run_locks = {name: threading.Lock() for name in (INVENTORY, PLAN, OPERATION_LOG)}

        ensure_directory(self.database_path.parent)
        try:
            self._conn = sqlite3.connect(
                str(self.database_path), check_same_thread=False, isolation_level=None, timeout=5.0
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.database_path}: {e}") from e

        self._apply_migrations()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # -- plumbing ---------------------------------------------------------

    def _apply_migrations(self) -> None:
        with self._lock:
            try:
                current = self._conn.execute("PRAGMA user_version").fetchone()[0]
                for version in sorted(v for v in MIGRATIONS if v > current):
                    logger.info(f"Migrating database {self.database_path} to version {version}")
                    self._conn.executescript(
                        "BEGIN IMMEDIATE;\n"
                        f"{MIGRATIONS[version]}\n"
                        f"PRAGMA user_version = {version};\n"
                        "COMMIT;"
                    )
                self._conn.execute(
                    "INSERT OR REPLACE INTO app_meta (key, value) VALUES ('schema_version', ?)",
                    (str(self.schema_version),),
                )
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.rollback()
                raise StoreError(f"Failed to migrate database {self.database_path}: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"Cannot start transaction: {e}") from e
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StoreError(f"Transaction failed: {e}") from e
            except BaseException:
                self._conn.rollback()
                raise

    def _query(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Query failed: {e}") from e

    @contextmanager
    def exclusive(self, *tables: str) -> Iterator[None]:
        """Hold exclusive run access to the named tables for one stage run."""
        acquired = []
        try:
            for table in tables:
                lock = self._run_locks[table]
                if not lock.acquire(blocking=False):
                    raise StoreError(f"Table {table} is in use by another run")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # -- metadata ---------------------------------------------------------

    def set_meta(self, key: str, value: str) -> None:
        with self._transaction() as conn:
            conn.execute("INSERT OR REPLACE INTO app_meta (key, value) VALUES (?, ?)", (key, value))

    def get_meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        rows = self._query("SELECT value FROM app_meta WHERE key = ?", (key,))
        return rows[0]['value'] if rows else default

    def user_version(self) -> int:
        return self._query("PRAGMA user_version")[0][0]

    # -- inventory --------------------------------------------------------

    def inventory_snapshot(self) -> List[MediaRecord]:
        rows = self._query(
            "SELECT path, size, mtime, content_hash, legacy_hash, capture_timestamp, "
            "timestamp_source, camera_make, camera_model, artist FROM media_inventory ORDER BY path"
        )
        return [
            MediaRecord(
                path=row['path'],
                size=row['size'],
                mtime=row['mtime'],
                content_hash=row['content_hash'],
                legacy_hash=row['legacy_hash'],
                capture_timestamp=row['capture_timestamp'],
                timestamp_source=row['timestamp_source'],
                camera_make=row['camera_make'],
                camera_model=row['camera_model'],
                artist=row['artist'],
            )
            for row in rows
        ]

    def inventory_by_path(self) -> Dict[str, MediaRecord]:
        return {record.path: record for record in self.inventory_snapshot()}

    def upsert_inventory(self, records: Iterable[MediaRecord]) -> int:
        count = 0
        with self._transaction() as conn:
            for record in records:
                conn.execute(
                    "INSERT INTO media_inventory (path, size, mtime, content_hash, legacy_hash, "
                    "capture_timestamp, timestamp_source, camera_make, camera_model, artist, "
                    "schema_version, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP) "
                    "ON CONFLICT(path) DO UPDATE SET size = excluded.size, mtime = excluded.mtime, "
                    "content_hash = excluded.content_hash, legacy_hash = excluded.legacy_hash, "
                    "capture_timestamp = excluded.capture_timestamp, "
                    "timestamp_source = excluded.timestamp_source, camera_make = excluded.camera_make, "
                    "camera_model = excluded.camera_model, artist = excluded.artist, "
                    "schema_version = excluded.schema_version, updated_at = CURRENT_TIMESTAMP",
                    (
                        record.path, record.size, record.mtime, record.content_hash,
                        record.legacy_hash, record.capture_timestamp, record.timestamp_source,
                        record.camera_make, record.camera_model, record.artist,
                        self.schema_version,
                    ),
                )
                count += 1
        return count

    def delete_inventory(self, paths: Iterable[str]) -> int:
        paths = list(paths)
        with self._transaction() as conn:
            conn.executemany("DELETE FROM media_inventory WHERE path = ?", [(p,) for p in paths])
        return len(paths)

    def clear_inventory(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM media_inventory")

    # -- plan -------------------------------------------------------------

    def replace_plan(self, summary: PlanSummary) -> PlanSummary:
        """Persist a freshly generated plan in place of the previous one.

        Returns the same summary with entries carrying their stored ids.
        """
        stored: List[PlanItem] = []
        with self._transaction() as conn:
            conn.execute("DELETE FROM plan_entries")
            for position, item in enumerate(summary.entries):
                cursor = conn.execute(
                    "INSERT INTO plan_entries (generated_at, position, file_hash, file_size, "
                    "origin_file_name, origin_full_path, new_file_name, new_path, is_duplicate, "
                    "schema_version) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        summary.generated_at, position, item.file_hash, item.file_size,
                        item.origin_file_name, item.origin_full_path, item.new_file_name,
                        item.new_path, 1 if item.is_duplicate else 0, self.schema_version,
                    ),
                )
                stored.append(PlanItem(
                    file_hash=item.file_hash,
                    file_size=item.file_size,
                    origin_file_name=item.origin_file_name,
                    origin_full_path=item.origin_full_path,
                    new_file_name=item.new_file_name,
                    new_path=item.new_path,
                    is_duplicate=item.is_duplicate,
                    entry_id=cursor.lastrowid,
                ))
            for key, value in (
                ('plan_generated_at', summary.generated_at),
                ('plan_entry_count', str(summary.total_entries)),
                ('plan_total_bytes', str(summary.total_bytes)),
                ('plan_schema_version', str(self.schema_version)),
            ):
                conn.execute("INSERT OR REPLACE INTO app_meta (key, value) VALUES (?, ?)", (key, value))

        summary.entries = stored
        return summary

    def load_plan(self) -> Optional[PlanSummary]:
        """Rebuild the most recently persisted plan, or None if there is none."""
        generated_at = self.get_meta('plan_generated_at')
        if generated_at is None:
            return None

        rows = self._query(
            "SELECT id, file_hash, file_size, origin_file_name, origin_full_path, new_file_name, "
            "new_path, is_duplicate FROM plan_entries ORDER BY position"
        )
        entries = [
            PlanItem(
                file_hash=row['file_hash'],
                file_size=row['file_size'],
                origin_file_name=row['origin_file_name'],
                origin_full_path=row['origin_full_path'],
                new_file_name=row['new_file_name'],
                new_path=row['new_path'],
                is_duplicate=bool(row['is_duplicate']),
                entry_id=row['id'],
            )
            for row in rows
        ]
        duplicates = sum(1 for item in entries if item.is_duplicate)
        return PlanSummary(
            generated_at=generated_at,
            total_entries=len(entries),
            duplicate_entries=duplicates,
            unique_entries=len(entries) - duplicates,
            destination_buckets=len({item.new_path for item in entries}),
            total_bytes=sum(item.file_size for item in entries),
            entries=entries,
        )

    # -- operation log ----------------------------------------------------

    def append_log(self, entry: OperationLogEntry) -> OperationLogEntry:
        """Durably append one log entry; returns it with its stored id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO operation_log (plan_item_ref, stage, operation, original_path, "
                "destination_path, content_hash, error, timestamp, schema_version) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.plan_item_ref, entry.stage.value, entry.operation, entry.original_path,
                    entry.destination_path, entry.content_hash, entry.error, entry.timestamp,
                    self.schema_version,
                ),
            )
            entry_id = cursor.lastrowid
        return OperationLogEntry(
            plan_item_ref=entry.plan_item_ref,
            stage=entry.stage,
            operation=entry.operation,
            original_path=entry.original_path,
            destination_path=entry.destination_path,
            content_hash=entry.content_hash,
            timestamp=entry.timestamp,
            error=entry.error,
            entry_id=entry_id,
        )

    def log_entries(self) -> List[OperationLogEntry]:
        """All log entries in the order they were written."""
        rows = self._query(
            "SELECT id, plan_item_ref, stage, operation, original_path, destination_path, "
            "content_hash, error, timestamp FROM operation_log ORDER BY id"
        )
        return [
            OperationLogEntry(
                plan_item_ref=row['plan_item_ref'],
                stage=LogStage(row['stage']),
                operation=row['operation'],
                original_path=row['original_path'],
                destination_path=row['destination_path'],
                content_hash=row['content_hash'],
                timestamp=row['timestamp'],
                error=row['error'],
                entry_id=row['id'],
            )
            for row in rows
        ]

    def counts(self) -> Dict[str, int]:
        """Row counts per table, for status reporting."""
        return {
            INVENTORY: self._query("SELECT COUNT(*) FROM media_inventory")[0][0],
            PLAN: self._query("SELECT COUNT(*) FROM plan_entries")[0][0],
            OPERATION_LOG: self._query("SELECT COUNT(*) FROM operation_log")[0][0],
        }
