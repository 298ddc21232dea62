"""Detail scoring and the priority order used to pick surviving records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from fitsync.core.constants import (
    AUTHORITATIVE_SOURCES,
    DEFAULT_DETAIL_WEIGHTS,
    GENERIC_EXERCISE_NAMES,
    MEAL,
    WORKOUT,
)
from fitsync.core.models import CanonicalRecord

_COUNTED_KEYS = {"set", "named_exercise", "item", "item_calories"}


def is_populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return bool(value)
    return True


def _exercises(fields: Mapping[str, Any]) -> Iterable[Mapping[str, Any]]:
    return [item for item in fields.get("exercises") or [] if isinstance(item, Mapping)]


def _workout_counts(fields: Mapping[str, Any]) -> Dict[str, int]:
    sets = 0
    named = 0
    for exercise in _exercises(fields):
        name = str(exercise.get("name") or "").strip().lower()
        if name not in GENERIC_EXERCISE_NAMES:
            named += 1
        for item in exercise.get("sets") or []:
            if isinstance(item, Mapping) and item.get("reps") is not None and item.get("load_kg") is not None:
                sets += 1
    return {"set": sets, "named_exercise": named}


def _meal_counts(fields: Mapping[str, Any]) -> Dict[str, int]:
    items = [item for item in fields.get("items") or [] if isinstance(item, Mapping)]
    return {
        "item": len(items),
        "item_calories": sum(1 for item in items if item.get("calories") is not None),
    }


def compute_detail_score(
    kind: str,
    fields: Mapping[str, Any],
    weights: Optional[Mapping[str, int]] = None,
) -> int:
    """Weighted count of populated fields for one record kind."""
    table = weights if weights is not None else DEFAULT_DETAIL_WEIGHTS.get(kind, {})
    counts: Dict[str, int] = {}
    if kind == WORKOUT:
        counts = _workout_counts(fields)
    elif kind == MEAL:
        counts = _meal_counts(fields)

    score = 0
    for key, weight in table.items():
        if key in _COUNTED_KEYS:
            score += weight * counts.get(key, 0)
        elif is_populated(fields.get(key)):
            score += weight
    return score


def detail_score(record: CanonicalRecord, weights: Optional[Mapping[str, Mapping[str, int]]] = None) -> int:
    """Score a record from its current fields; never cached."""
    table = (weights or DEFAULT_DETAIL_WEIGHTS).get(record.kind, {})
    return compute_detail_score(record.kind, record.fields, table)


def category_rank(source: str) -> int:
    """Chat/manual entries outrank imports."""
    return 1 if source in AUTHORITATIVE_SOURCES else 0


def priority_key(
    record: CanonicalRecord,
    weights: Optional[Mapping[str, Mapping[str, int]]] = None,
) -> Tuple[int, int, datetime]:
    return category_rank(record.source), detail_score(record, weights), record.captured_at


def compare_records(
    left: CanonicalRecord,
    right: CanonicalRecord,
    weights: Optional[Mapping[str, Mapping[str, int]]] = None,
) -> int:
    """Total order over (source category, detail score, capture recency).

    Returns a positive number when ``left`` should survive over ``right``,
    negative for the opposite, and 0 for a true tie.
    """
    left_key = priority_key(left, weights)
    right_key = priority_key(right, weights)
    if left_key > right_key:
        return 1
    if left_key < right_key:
        return -1
    return 0
