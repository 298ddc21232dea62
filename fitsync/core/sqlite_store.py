"""SQLite-backed record store and import history."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fitsync.core.models import CanonicalRecord, ImportBatch
from fitsync.core.store import StorageError

SCHEMA_VERSION = 1

_DDL = """
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    ts REAL NOT NULL,
    source TEXT NOT NULL,
    payload TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_kind_ts ON records(kind, ts);

CREATE TABLE IF NOT EXISTS import_history (
    id TEXT PRIMARY KEY,
    imported_at TEXT NOT NULL,
    payload TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_import_history_imported_at ON import_history(imported_at);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);
"""


def ensure_schema(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open (or create) the database and apply the schema.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        An open connection usable from any thread; callers serialize access.
    """
    db_path = Path(db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")

    try:
        row = conn.execute("SELECT version FROM schema_version").fetchone()
        current_version = row["version"] if row else 0
    except sqlite3.OperationalError:
        current_version = 0

    if current_version < SCHEMA_VERSION:
        conn.executescript(_DDL)
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        conn.commit()

    return conn


class SqliteDatabase:
    """Shared lazily-opened connection for the store and history."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self.lock = threading.RLock()

    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = ensure_schema(self.db_path)
            except (sqlite3.Error, OSError) as exc:
                raise StorageError(f"Cannot open database {self.db_path}: {exc}") from exc
        return self._conn

    def close(self) -> None:
        with self.lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class SqliteRecordStore:
    """Record store with one row per record, indexed by kind and timestamp."""

    def __init__(self, database: SqliteDatabase) -> None:
        self._db = database

    def _row_to_record(self, row: sqlite3.Row) -> CanonicalRecord:
        try:
            return CanonicalRecord.from_dict(json.loads(row["payload"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageError(f"Corrupt stored record {row['id']}: {exc}") from exc

    def get(self, kind: str, record_id: str) -> Optional[CanonicalRecord]:
        with self._db.lock:
            try:
                row = self._db.connection().execute(
                    "SELECT id, payload FROM records WHERE kind = ? AND id = ?",
                    (kind, record_id),
                ).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to read {kind} {record_id}: {exc}") from exc
        return self._row_to_record(row) if row else None

    def query_by_time_window(self, kind: str, start: datetime, end: datetime) -> List[CanonicalRecord]:
        with self._db.lock:
            try:
                rows = self._db.connection().execute(
                    """SELECT id, payload FROM records
                       WHERE kind = ? AND ts BETWEEN ? AND ?
                       ORDER BY ts, id""",
                    (kind, start.timestamp(), end.timestamp()),
                ).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to query {kind} records: {exc}") from exc
        return [self._row_to_record(row) for row in rows]

    def put(self, record: CanonicalRecord) -> None:
        payload = json.dumps(record.to_dict(), sort_keys=True)
        with self._db.lock:
            conn = self._db.connection()
            try:
                conn.execute(
                    """INSERT OR REPLACE INTO records (id, kind, ts, source, payload)
                       VALUES (?, ?, ?, ?, ?)""",
                    (record.id, record.kind, record.timestamp.timestamp(), record.source, payload),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(f"Failed to write {record.kind} {record.id}: {exc}") from exc

    def delete(self, kind: str, record_id: str) -> None:
        with self._db.lock:
            conn = self._db.connection()
            try:
                conn.execute("DELETE FROM records WHERE kind = ? AND id = ?", (kind, record_id))
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(f"Failed to delete {kind} {record_id}: {exc}") from exc


class SqliteImportHistory:
    """Import history persisted next to the records."""

    def __init__(self, database: SqliteDatabase) -> None:
        self._db = database

    def append(self, batch: ImportBatch) -> None:
        entry = batch.to_history()
        with self._db.lock:
            conn = self._db.connection()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO import_history (id, imported_at, payload) VALUES (?, ?, ?)",
                    (entry["id"], entry["importedAt"], json.dumps(entry)),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(f"Failed to save import history {entry['id']}: {exc}") from exc

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = "SELECT payload FROM import_history ORDER BY imported_at DESC"
        params: tuple = ()
        if limit:
            query += " LIMIT ?"
            params = (int(limit),)
        with self._db.lock:
            try:
                rows = self._db.connection().execute(query, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to read import history: {exc}") from exc
        return [json.loads(row["payload"]) for row in rows]
