"""Record store contract and in-memory implementations."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from fitsync.core.models import CanonicalRecord, ImportBatch


class StorageError(RuntimeError):
    """Raised when a store read or write fails."""


class RecordStore(Protocol):
    """Durable keyed storage for canonical records."""

    def get(self, kind: str, record_id: str) -> Optional[CanonicalRecord]:
        ...

    def query_by_time_window(self, kind: str, start: datetime, end: datetime) -> List[CanonicalRecord]:
        ...

    def put(self, record: CanonicalRecord) -> None:
        ...

    def delete(self, kind: str, record_id: str) -> None:
        ...


class ImportHistory(Protocol):
    """Append-only log of finished import batches."""

    def append(self, batch: ImportBatch) -> None:
        ...

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        ...


class MemoryRecordStore:
    """Process-local store used by tests and dry runs."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], CanonicalRecord] = {}
        self._lock = threading.Lock()

    def get(self, kind: str, record_id: str) -> Optional[CanonicalRecord]:
        with self._lock:
            return self._records.get((kind, record_id))

    def query_by_time_window(self, kind: str, start: datetime, end: datetime) -> List[CanonicalRecord]:
        with self._lock:
            matches = [
                record
                for (record_kind, _), record in self._records.items()
                if record_kind == kind and start <= record.timestamp <= end
            ]
        return sorted(matches, key=lambda record: (record.timestamp, record.id))

    def put(self, record: CanonicalRecord) -> None:
        with self._lock:
            self._records[(record.kind, record.id)] = record

    def delete(self, kind: str, record_id: str) -> None:
        with self._lock:
            self._records.pop((kind, record_id), None)

    def all(self, kind: Optional[str] = None) -> List[CanonicalRecord]:
        with self._lock:
            records = [record for record in self._records.values() if kind is None or record.kind == kind]
        return sorted(records, key=lambda record: (record.kind, record.timestamp, record.id))

    def __len__(self) -> int:
        return len(self._records)


class MemoryImportHistory:
    """Import history kept in memory, newest first on read."""

    def __init__(self) -> None:
        self._entries: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def append(self, batch: ImportBatch) -> None:
        with self._lock:
            self._entries.append(batch.to_history())

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            entries = list(reversed(self._entries))
        return entries[:limit] if limit else entries
