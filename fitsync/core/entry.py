"""Chat and manual entries routed through the same resolver as imports."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from fitsync.core.canonicalize import CanonicalizationError, build_entry_record
from fitsync.core.constants import SOURCE_MANUAL
from fitsync.core.resolver import Resolution, Resolver
from fitsync.core.store import StorageError

logger = logging.getLogger(__name__)

# Keys of an entry mapping that describe the entry rather than its fields.
_ENTRY_KEYS = {"kind", "at", "timestamp", "source"}


@dataclass(frozen=True)
class EntryOutcome:
    """Result of logging one entry; exactly one of resolution/error is set."""

    ref: str
    resolution: Optional[Resolution] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.resolution is not None


def log_entry(
    resolver: Resolver,
    kind: str,
    fields: Mapping[str, Any],
    timestamp: Any,
    source: str = SOURCE_MANUAL,
    ref: str = "entry",
) -> Resolution:
    """Canonicalize and resolve one chat/manual entry.

    Raises:
        CanonicalizationError: if the entry cannot be turned into a record.
        StorageError: if the store rejects the commit.
    """
    record = build_entry_record(kind, fields, timestamp, source, resolver.settings, ref=ref)
    return resolver.resolve(record)


def log_entries(
    resolver: Resolver,
    entries: Iterable[Mapping[str, Any]],
    default_source: str = SOURCE_MANUAL,
) -> List[EntryOutcome]:
    """Log entries loaded from a file; a bad entry never stops the rest."""
    outcomes: List[EntryOutcome] = []
    for position, raw in enumerate(entries):
        ref = f"entry #{position}"
        fields: Dict[str, Any] = {key: value for key, value in raw.items() if key not in _ENTRY_KEYS}
        timestamp = raw.get("at", raw.get("timestamp"))
        try:
            if not raw.get("kind"):
                raise CanonicalizationError(ref, "Entry has no kind")
            if timestamp is None:
                raise CanonicalizationError(ref, "Entry has no timestamp")
            resolution = log_entry(
                resolver,
                str(raw["kind"]),
                fields,
                timestamp,
                source=str(raw.get("source") or default_source),
                ref=ref,
            )
        except (CanonicalizationError, StorageError) as exc:
            logger.warning("Skipping %s: %s", ref, exc)
            outcomes.append(EntryOutcome(ref=ref, error=str(exc)))
            continue
        outcomes.append(EntryOutcome(ref=ref, resolution=resolution))
    return outcomes
