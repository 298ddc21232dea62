"""Identity and conflict resolution for incoming canonical records.

For each new record the resolver looks up same-kind records inside the
kind's tolerance window, folds multiple candidates down to one survivor and
then decides between insert, replace, merge and discard:

* chat/manual records are never replaced or overwritten by imports; an
  import can only fill their gaps through a provenance-tagged supplement;
* an import candidate is always replaced by a chat/manual record;
* within one source category the higher detail score wins, then the more
  recently captured record, and a true tie keeps what is already stored.

``decide`` and ``plan_resolution`` are pure. ``Resolver`` adds the store
round-trip and per-slot locking so lookup, decision and commit for one slot
never interleave with another writer.
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from fitsync.core.canonicalize import item_key
from fitsync.core.config import EngineSettings
from fitsync.core.constants import MULTI_ENTRY_KINDS
from fitsync.core.models import CanonicalRecord, Supplement, utcnow
from fitsync.core.scoring import compare_records, is_populated
from fitsync.core.store import RecordStore

logger = logging.getLogger(__name__)

INSERT = "insert"
REPLACE = "replace"
MERGE = "merge"
DISCARD = "discard"

Weights = Optional[Mapping[str, Mapping[str, int]]]


@dataclass(frozen=True)
class Decision:
    """Outcome of comparing one stored record with one incoming record."""

    action: str
    survivor: CanonicalRecord
    reason: str = ""


@dataclass(frozen=True)
class Resolution:
    """Everything needed to commit one incoming record."""

    action: str
    record: CanonicalRecord
    puts: Tuple[CanonicalRecord, ...] = ()
    deletes: Tuple[CanonicalRecord, ...] = ()
    reason: str = ""


def supplement_gaps(
    authoritative: CanonicalRecord,
    donor: CanonicalRecord,
    now: datetime,
    exclude: Sequence[str] = (),
) -> Optional[CanonicalRecord]:
    """Copy donor fields the authoritative record lacks into a new supplement.

    Returns None when the donor contributes nothing new, which keeps repeated
    imports of the same data from piling up supplements.
    """
    taken = authoritative.supplemented_keys()
    gaps = {
        key: value
        for key, value in donor.fields.items()
        if key not in exclude
        and is_populated(value)
        and not is_populated(authoritative.fields.get(key))
        and key not in taken
    }
    if not gaps:
        return None
    supplement = Supplement(source=donor.source, record_id=donor.id, added_at=now, fields=gaps)
    return replace(authoritative, supplements=authoritative.supplements + (supplement,))


def _item_richness(item: Mapping[str, Any]) -> int:
    return sum(1 for value in item.values() if is_populated(value))


def _decide_meal(existing: CanonicalRecord, new: CanonicalRecord, now: datetime) -> Decision:
    if not existing.is_authoritative and new.is_authoritative:
        return Decision(REPLACE, new, "chat/manual meal supersedes imported meal")

    existing_items = [dict(item) for item in existing.fields.get("items") or []]
    known = {item_key(item): position for position, item in enumerate(existing_items)}

    if existing.is_authoritative and not new.is_authoritative:
        supplied = {
            item_key(item)
            for supplement in existing.supplements
            for item in supplement.fields.get("items") or []
        }
        extras = [
            dict(item)
            for item in new.fields.get("items") or []
            if item_key(item) not in known and item_key(item) not in supplied
        ]
        merged = supplement_gaps(existing, new, now, exclude=("items",))
        if extras:
            base = merged or existing
            supplement = Supplement(source=new.source, record_id=new.id, added_at=now, fields={"items": extras})
            merged = replace(base, supplements=base.supplements + (supplement,))
        if merged is None:
            return Decision(DISCARD, existing, "import adds nothing to chat/manual meal")
        return Decision(MERGE, merged, "import items supplement chat/manual meal")

    changed = False
    for item in new.fields.get("items") or []:
        key = item_key(item)
        if key not in known:
            known[key] = len(existing_items)
            existing_items.append(dict(item))
            changed = True
        elif _item_richness(item) > _item_richness(existing_items[known[key]]):
            existing_items[known[key]] = dict(item)
            changed = True

    fields = dict(existing.fields)
    for key, value in new.fields.items():
        if key != "items" and is_populated(value) and not is_populated(fields.get(key)):
            fields[key] = value
            changed = True

    if not changed:
        return Decision(DISCARD, existing, "meal items already recorded")
    fields["items"] = existing_items
    return Decision(MERGE, replace(existing, fields=fields), "meal items merged by identity")


def decide(
    existing: Optional[CanonicalRecord],
    new: CanonicalRecord,
    weights: Weights = None,
    now: Optional[datetime] = None,
) -> Decision:
    """Classify the relationship between a stored record and an incoming one."""
    now = now or utcnow()
    if existing is None:
        return Decision(INSERT, new, "no candidate in window")

    if new.kind in MULTI_ENTRY_KINDS:
        return _decide_meal(existing, new, now)

    if existing.is_authoritative and not new.is_authoritative:
        merged = supplement_gaps(existing, new, now)
        if merged is None:
            return Decision(DISCARD, existing, "import adds nothing to chat/manual record")
        return Decision(MERGE, merged, "import fills gaps of chat/manual record")

    if not existing.is_authoritative and new.is_authoritative:
        return Decision(REPLACE, new, "chat/manual record supersedes import")

    order = compare_records(new, existing, weights)
    if order > 0:
        return Decision(REPLACE, new, "more detailed or more recently captured")
    if order == 0:
        return Decision(DISCARD, existing, "identical priority, keeping stored record")
    return Decision(DISCARD, existing, "stored record is more detailed")


def fold_candidates(
    candidates: Sequence[CanonicalRecord],
    weights: Weights = None,
    now: Optional[datetime] = None,
) -> Tuple[CanonicalRecord, List[CanonicalRecord]]:
    """Reduce several stored candidates to one survivor, left to right.

    Returns the survivor (possibly carrying new supplements) and the stored
    records that lost and must be deleted.
    """
    if not candidates:
        raise ValueError("No candidates to fold")
    now = now or utcnow()
    survivor = candidates[0]
    losers: List[CanonicalRecord] = []
    for other in candidates[1:]:
        decision = decide(survivor, other, weights, now)
        if decision.action == REPLACE:
            losers.append(survivor)
            donated = None
            if other.is_authoritative and not survivor.is_authoritative and other.kind not in MULTI_ENTRY_KINDS:
                donated = supplement_gaps(other, survivor, now)
            survivor = donated or other
        else:
            losers.append(other)
            survivor = decision.survivor
    return survivor, losers


def plan_resolution(
    candidates: Sequence[CanonicalRecord],
    new: CanonicalRecord,
    weights: Weights = None,
    now: Optional[datetime] = None,
) -> Resolution:
    """Decide the fate of ``new`` against the current candidates."""
    now = now or utcnow()
    if not candidates:
        return Resolution(INSERT, new, puts=(new,), reason="no candidate in window")

    stored = {candidate.id: candidate for candidate in candidates}
    survivor, losers = fold_candidates(candidates, weights, now)
    decision = decide(survivor, new, weights, now)

    puts: List[CanonicalRecord] = []
    deletes = list(losers)
    if decision.action == REPLACE:
        puts.append(decision.survivor)
        deletes.append(survivor)
    elif decision.action == MERGE:
        puts.append(decision.survivor)
    elif stored.get(survivor.id) is not survivor:
        # Folding changed the survivor even though the new record is dropped.
        puts.append(survivor)

    return Resolution(
        action=decision.action,
        record=decision.survivor,
        puts=tuple(puts),
        deletes=tuple(deletes),
        reason=decision.reason,
    )


class SlotLocks:
    """Striped locks keyed by (kind, timestamp bucket).

    Every bucket intersecting a record's tolerance window is held, so two
    records close enough to match always share at least one bucket. Stripes
    are acquired in sorted order, which rules out lock-order deadlocks.
    """

    def __init__(self, bucket_seconds: int = 300, stripes: int = 64) -> None:
        self.bucket_seconds = max(int(bucket_seconds), 1)
        self._stripes = [threading.Lock() for _ in range(max(stripes, 1))]

    def stripes_for(self, kind: str, start: datetime, end: datetime) -> List[int]:
        first = int(start.timestamp() // self.bucket_seconds)
        last = int(end.timestamp() // self.bucket_seconds)
        return sorted({hash((kind, bucket)) % len(self._stripes) for bucket in range(first, last + 1)})

    @contextmanager
    def hold(self, kind: str, start: datetime, end: datetime) -> Iterator[None]:
        with ExitStack() as stack:
            for index in self.stripes_for(kind, start, end):
                stack.enter_context(self._stripes[index])
            yield


@dataclass
class Resolver:
    """Resolve records against a store, one slot at a time."""

    store: RecordStore
    settings: EngineSettings = field(default_factory=EngineSettings)
    clock: Callable[[], datetime] = utcnow
    locks: SlotLocks = field(init=False, repr=False)

    def __post_init__(self) -> None:
        widest = max(self.settings.tolerance_seconds.values(), default=0)
        self.locks = SlotLocks(bucket_seconds=max(widest, 60))

    def window(self, record: CanonicalRecord) -> Tuple[datetime, datetime]:
        tolerance = timedelta(seconds=self.settings.tolerance_for(record.kind))
        return record.timestamp - tolerance, record.timestamp + tolerance

    def resolve(self, record: CanonicalRecord) -> Resolution:
        """Look up, decide and commit; StorageError leaves the slot untouched or healable."""
        start, end = self.window(record)
        with self.locks.hold(record.kind, start, end):
            candidates = self.store.query_by_time_window(record.kind, start, end)
            resolution = plan_resolution(candidates, record, self.settings.detail_weights, self.clock())
            # Writes land before deletes so a failure never empties the slot;
            # a rerun folds any leftover duplicate away.
            for item in resolution.puts:
                self.store.put(item)
            for item in resolution.deletes:
                self.store.delete(item.kind, item.id)

        logger.debug(
            "%s %s at %s from %s: %s (%s)",
            resolution.action,
            record.kind,
            record.timestamp.isoformat(),
            record.source,
            resolution.record.id,
            resolution.reason,
        )
        return resolution
