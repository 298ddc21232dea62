"""Data models shared by decoders, the resolver and the orchestrator."""

from __future__ import annotations

import uuid
from dataclasses import FrozenInstanceError, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fitsync.core.constants import (
    AUTHORITATIVE_SOURCES,
    RECORD_KINDS,
    SOURCES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
)

TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_FAILED}


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class RawEntry:
    """Loosely typed decoder output, tagged with the decoder that produced it."""

    decoder: str
    ref: str


@dataclass(frozen=True)
class HealthExportEntry(RawEntry):
    """One handled element of a health export document."""

    tag: str
    attributes: Dict[str, str]
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkoutLogEntry(RawEntry):
    """Consecutive workout-log rows that share one session key."""

    session_key: str
    rows: Tuple[Dict[str, str], ...]


@dataclass(frozen=True)
class Supplement:
    """Gap fields contributed to an authoritative record by a lower-priority one."""

    source: str
    record_id: str
    added_at: datetime
    fields: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "recordId": self.record_id,
            "addedAt": _iso(self.added_at),
            "fields": dict(self.fields),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Supplement":
        return cls(
            source=str(data["source"]),
            record_id=str(data.get("recordId") or ""),
            added_at=_from_iso(data.get("addedAt")) or utcnow(),
            fields=dict(data.get("fields") or {}),
        )


@dataclass(frozen=True)
class CanonicalRecord:
    """Normalized, store-ready representation of one fact."""

    kind: str
    timestamp: datetime
    source: str
    fields: Dict[str, Any]
    captured_at: datetime
    id: str = field(default_factory=new_id)
    supplements: Tuple[Supplement, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind: {self.kind}")
        if self.source not in SOURCES:
            raise ValueError(f"Unknown record source: {self.source}")

    @property
    def is_authoritative(self) -> bool:
        return self.source in AUTHORITATIVE_SOURCES

    def supplemented_keys(self) -> set:
        keys = set()
        for supplement in self.supplements:
            keys.update(supplement.fields)
        return keys

    def to_dict(self, detail_score: Optional[int] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "timestamp": _iso(self.timestamp),
            "source": self.source,
            "capturedAt": _iso(self.captured_at),
            "fields": dict(self.fields),
            "supplements": [item.to_dict() for item in self.supplements],
        }
        if detail_score is not None:
            payload["detailScore"] = detail_score
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalRecord":
        # detailScore is derived; anything stored alongside is ignored.
        timestamp = _from_iso(data.get("timestamp"))
        if timestamp is None:
            raise ValueError("Stored record is missing its timestamp")
        return cls(
            id=str(data["id"]),
            kind=str(data["kind"]),
            timestamp=timestamp,
            source=str(data["source"]),
            captured_at=_from_iso(data.get("capturedAt")) or timestamp,
            fields=dict(data.get("fields") or {}),
            supplements=tuple(Supplement.from_dict(item) for item in data.get("supplements") or []),
        )


@dataclass(frozen=True)
class EntryError:
    """A per-entry failure recorded on the batch instead of aborting it."""

    raw_entry_ref: str
    message: str
    error_type: str = "ParseError"

    def to_dict(self) -> Dict[str, str]:
        return {
            "rawEntryRef": self.raw_entry_ref,
            "message": self.message,
            "errorType": self.error_type,
        }


@dataclass
class ImportBatch:
    """One orchestrator run against one file; frozen once it reaches a terminal status."""

    source: str
    file_name: str
    id: str = field(default_factory=new_id)
    started_at: datetime = field(default_factory=utcnow)
    status: str = STATUS_PENDING
    inserted: int = 0
    replaced: int = 0
    merged: int = 0
    discarded_as_duplicate: int = 0
    skipped: int = 0
    errors: List[EntryError] = field(default_factory=list)
    error_code: Optional[str] = None
    finished_at: Optional[datetime] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "status", None) in TERMINAL_STATUSES:
            raise FrozenInstanceError(f"Import batch {self.id} is {self.status} and can no longer change")
        super().__setattr__(name, value)

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def record_error(self, raw_entry_ref: str, message: str, error_type: str) -> None:
        if self.is_finished:
            raise FrozenInstanceError(f"Import batch {self.id} is {self.status} and can no longer change")
        self.errors.append(EntryError(raw_entry_ref=raw_entry_ref, message=message, error_type=error_type))

    def finish(self, status: str, error_code: Optional[str] = None) -> "ImportBatch":
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal batch status: {status}")
        self.errors = tuple(self.errors)  # type: ignore[assignment]
        self.error_code = error_code
        self.finished_at = utcnow()
        self.status = status
        return self

    def to_history(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "importedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "fileName": self.file_name,
            "status": self.status,
            "inserted": self.inserted,
            "replaced": self.replaced,
            "merged": self.merged,
            "discardedAsDuplicate": self.discarded_as_duplicate,
            "skipped": self.skipped,
            "errors": [error.to_dict() for error in self.errors],
            "errorCode": self.error_code,
        }
