from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from fitsync.core.config import EngineSettings
from fitsync.core.constants import (
    MEAL,
    SLEEP,
    SOURCE_APPLE,
    SOURCE_CHAT,
    SOURCE_HEVY,
    SOURCE_MANUAL,
    WEIGHT,
    WORKOUT,
)
from fitsync.core.models import CanonicalRecord
from fitsync.core.resolver import (
    DISCARD,
    INSERT,
    MERGE,
    REPLACE,
    Resolver,
    SlotLocks,
    decide,
    fold_candidates,
    plan_resolution,
)
from fitsync.core.store import MemoryRecordStore, StorageError

WHEN = datetime(2024, 3, 1, 7, 30, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _weight(source: str, value: float, at: datetime = WHEN, captured_at: datetime = WHEN, **extra) -> CanonicalRecord:
    fields = {"value": value, "unit": "kg", **extra}
    return CanonicalRecord(kind=WEIGHT, timestamp=at, source=source, fields=fields, captured_at=captured_at)


def _session(sets: int, source: str = SOURCE_HEVY, **extra) -> CanonicalRecord:
    exercises = [{"name": "Bench Press", "sets": [{"index": i, "reps": 8, "load_kg": 80.0} for i in range(sets)]}]
    fields = {"title": "Push Day", "duration_s": 2700.0, "exercises": exercises, **extra}
    return CanonicalRecord(kind=WORKOUT, timestamp=WHEN, source=source, fields=fields, captured_at=WHEN)


def _meal(source: str, items: list, at: datetime = WHEN, **extra) -> CanonicalRecord:
    return CanonicalRecord(kind=MEAL, timestamp=at, source=source, fields={"items": items, **extra}, captured_at=at)


class FlakyStore(MemoryRecordStore):
    """Fails the first delete after ``fail_deletes`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_deletes = False

    def delete(self, kind: str, record_id: str) -> None:
        if self.fail_deletes:
            self.fail_deletes = False
            raise StorageError("disk full")
        super().delete(kind, record_id)


# decide ---------------------------------------------------------------------


def test_decide_insert_without_candidate() -> None:
    new = _weight(SOURCE_APPLE, 80.0)
    decision = decide(None, new)
    assert decision.action == INSERT
    assert decision.survivor is new


def test_decide_chat_record_absorbs_import_gaps() -> None:
    chat = _weight(SOURCE_CHAT, 80.0)
    imported = _weight(SOURCE_APPLE, 80.2, device="Smart Scale")
    decision = decide(chat, imported, now=NOW)

    assert decision.action == MERGE
    merged = decision.survivor
    assert merged.id == chat.id
    assert merged.source == SOURCE_CHAT
    assert merged.fields == chat.fields
    (supplement,) = merged.supplements
    assert supplement.source == SOURCE_APPLE
    assert supplement.record_id == imported.id
    assert supplement.fields == {"device": "Smart Scale"}


def test_decide_merge_that_adds_nothing_is_discard() -> None:
    chat = _weight(SOURCE_CHAT, 80.0)
    merged = decide(chat, _weight(SOURCE_APPLE, 80.2, device="Scale"), now=NOW).survivor
    again = decide(merged, _weight(SOURCE_APPLE, 80.2, device="Scale"), now=NOW)
    assert again.action == DISCARD
    assert again.survivor is merged
    assert decide(chat, _weight(SOURCE_APPLE, 80.2), now=NOW).action == DISCARD


def test_decide_manual_replaces_import_regardless_of_score() -> None:
    imported = _weight(SOURCE_APPLE, 80.2, device="Scale", notes="morning")
    manual = _weight(SOURCE_MANUAL, 80.0)
    decision = decide(imported, manual)
    assert decision.action == REPLACE
    assert decision.survivor is manual


def test_decide_same_category_prefers_detail_then_recency() -> None:
    poor = _session(1)
    rich = _session(3)
    assert decide(poor, rich).action == REPLACE
    assert decide(rich, poor).action == DISCARD

    newer = _weight(SOURCE_APPLE, 80.1, captured_at=WHEN + timedelta(hours=1))
    older = _weight(SOURCE_APPLE, 80.0)
    assert decide(older, newer).action == REPLACE
    assert decide(newer, older).action == DISCARD


def test_decide_true_tie_keeps_existing() -> None:
    existing = _weight(SOURCE_HEVY, 80.0)
    decision = decide(existing, _weight(SOURCE_APPLE, 80.0))
    assert decision.action == DISCARD
    assert decision.survivor is existing


def test_decide_meal_items_merge_by_identity() -> None:
    stored = _meal(SOURCE_APPLE, [{"name": "Oats"}])
    incoming = _meal(SOURCE_APPLE, [{"name": "oats", "calories": 300.0}, {"name": "Banana"}])
    decision = decide(stored, incoming, now=NOW)

    assert decision.action == MERGE
    assert decision.survivor.id == stored.id
    assert decision.survivor.fields["items"] == [{"name": "oats", "calories": 300.0}, {"name": "Banana"}]
    assert decide(decision.survivor, incoming, now=NOW).action == DISCARD


def test_decide_import_meal_never_alters_chat_items() -> None:
    chat = _meal(SOURCE_CHAT, [{"name": "Oats"}])
    imported = _meal(SOURCE_APPLE, [{"name": "Oats", "calories": 300.0}, {"name": "Coffee"}], name="Breakfast")
    decision = decide(chat, imported, now=NOW)

    assert decision.action == MERGE
    assert decision.survivor.fields["items"] == [{"name": "Oats"}]
    supplied = {key: value for supplement in decision.survivor.supplements for key, value in supplement.fields.items()}
    assert supplied == {"name": "Breakfast", "items": [{"name": "Coffee"}]}
    assert decide(decision.survivor, imported, now=NOW).action == DISCARD


def test_decide_chat_meal_replaces_imported_meal() -> None:
    imported = _meal(SOURCE_APPLE, [{"name": "Oats", "calories": 300.0}])
    chat = _meal(SOURCE_CHAT, [{"name": "Oats"}])
    assert decide(imported, chat).action == REPLACE


# fold / plan ----------------------------------------------------------------


def test_fold_candidates_keeps_best_and_collects_losers() -> None:
    a, b, c = _session(1), _session(3), _session(2)
    survivor, losers = fold_candidates([a, b, c])
    assert survivor is b
    assert {record.id for record in losers} == {a.id, c.id}


def test_fold_candidates_import_first_still_supplements_chat_survivor() -> None:
    stray = _weight(SOURCE_APPLE, 80.1, device="Scale")
    chat = _weight(SOURCE_CHAT, 80.0)

    survivor, losers = fold_candidates([stray, chat], now=NOW)

    assert survivor.id == chat.id
    assert survivor.fields == chat.fields
    assert survivor.supplements[0].fields == {"device": "Scale"}
    assert survivor.supplements[0].record_id == stray.id
    assert losers == [stray]

    reversed_survivor, _ = fold_candidates([chat, stray], now=NOW)
    assert reversed_survivor.supplements == survivor.supplements


def test_fold_candidates_requires_input() -> None:
    with pytest.raises(ValueError):
        fold_candidates([])


def test_plan_resolution_replace_deletes_survivor_and_losers() -> None:
    a, b = _session(1), _session(2)
    new = _session(3, notes="pr")
    plan = plan_resolution([a, b], new)
    assert plan.action == REPLACE
    assert plan.puts == (new,)
    assert {record.id for record in plan.deletes} == {a.id, b.id}


def test_plan_resolution_discard_persists_folded_survivor() -> None:
    chat = _weight(SOURCE_CHAT, 80.0)
    stray = _weight(SOURCE_APPLE, 80.1, device="Scale")
    plan = plan_resolution([chat, stray], _weight(SOURCE_APPLE, 80.1), now=NOW)

    assert plan.action == DISCARD
    assert [record.id for record in plan.puts] == [chat.id]
    assert plan.puts[0].supplements[0].fields == {"device": "Scale"}
    assert [record.id for record in plan.deletes] == [stray.id]


def test_plan_resolution_discard_on_clean_slot_writes_nothing() -> None:
    stored = _session(3)
    plan = plan_resolution([stored], _session(1))
    assert plan.action == DISCARD
    assert plan.puts == ()
    assert plan.deletes == ()


# Resolver against a store ---------------------------------------------------


def test_resolver_window_uses_kind_tolerance(store) -> None:
    resolver = Resolver(store=store)
    resolver.resolve(_weight(SOURCE_APPLE, 80.0))

    assert resolver.resolve(_weight(SOURCE_APPLE, 80.0, at=WHEN + timedelta(seconds=119))).action == DISCARD
    assert resolver.resolve(_weight(SOURCE_APPLE, 80.0, at=WHEN + timedelta(minutes=10))).action == INSERT


def test_resolver_workouts_match_exact_start_only(store) -> None:
    resolver = Resolver(store=store)
    resolver.resolve(_session(3))
    shifted = CanonicalRecord(
        kind=WORKOUT,
        timestamp=WHEN + timedelta(seconds=1),
        source=SOURCE_HEVY,
        fields=_session(3).fields,
        captured_at=WHEN,
    )
    assert resolver.resolve(shifted).action == INSERT


@pytest.mark.parametrize("import_first", [True, False])
def test_source_priority_independent_of_arrival_order(store, import_first: bool) -> None:
    resolver = Resolver(store=store, clock=lambda: NOW)
    imported = _weight(SOURCE_APPLE, 80.2, device="Smart Scale", at=WHEN + timedelta(seconds=40))
    manual = _weight(SOURCE_MANUAL, 80.0)
    for record in ([imported, manual] if import_first else [manual, imported]):
        resolver.resolve(record)

    (survivor,) = store.all(WEIGHT)
    assert survivor.source == SOURCE_MANUAL
    assert survivor.fields["value"] == 80.0
    assert survivor.id == manual.id


def test_detail_monotonicity_in_both_orders(store) -> None:
    resolver = Resolver(store=store)
    resolver.resolve(_session(3))
    resolver.resolve(_session(1))
    assert detail_of(store.all(WORKOUT)) == [3]

    other = MemoryRecordStore()
    resolver = Resolver(store=other)
    resolver.resolve(_session(1))
    resolver.resolve(_session(3))
    assert detail_of(other.all(WORKOUT)) == [3]


def detail_of(records: List[CanonicalRecord]) -> List[int]:
    return [len(record.fields["exercises"][0]["sets"]) for record in records]


def test_replace_is_healed_after_failed_delete() -> None:
    store = FlakyStore()
    resolver = Resolver(store=store)
    resolver.resolve(_session(1))

    store.fail_deletes = True
    with pytest.raises(StorageError):
        resolver.resolve(_session(3))
    assert len(store.all(WORKOUT)) == 2

    assert resolver.resolve(_session(2)).action == DISCARD
    assert detail_of(store.all(WORKOUT)) == [3]


def test_concurrent_resolution_never_duplicates_a_slot(store) -> None:
    resolver = Resolver(store=store)
    barrier = threading.Barrier(8)
    errors: List[BaseException] = []

    def worker(offset: int) -> None:
        try:
            barrier.wait()
            resolver.resolve(_weight(SOURCE_APPLE, 80.0, at=WHEN + timedelta(seconds=offset)))
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(offset,)) for offset in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(store.all(WEIGHT)) == 1


def test_slot_locks_cover_the_whole_window() -> None:
    locks = SlotLocks(bucket_seconds=60, stripes=1024)
    stripes = locks.stripes_for(SLEEP, WHEN - timedelta(seconds=60), WHEN + timedelta(seconds=60))
    assert stripes == sorted(stripes)
    assert 2 <= len(stripes) <= 3
    with locks.hold(SLEEP, WHEN, WHEN):
        pass


def test_resolver_bucket_tracks_widest_tolerance(store) -> None:
    resolver = Resolver(store=store, settings=EngineSettings(tolerance_seconds={WEIGHT: 900}))
    assert resolver.locks is not None
    assert resolver.locks.bucket_seconds == 900
