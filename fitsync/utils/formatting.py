"""Formatting helpers used by exports and console output."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fitsync.core.constants import BODY_FAT, MEAL, SLEEP, WEIGHT, WORKOUT
from fitsync.core.models import CanonicalRecord


def format_duration(seconds: Optional[float]) -> str:
    """Format duration from seconds to H:MM:SS or M:SS."""
    if not seconds:
        return "N/A"
    total_seconds = int(float(seconds))
    h, rem = divmod(total_seconds, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def format_distance(meters: Optional[float]) -> str:
    """Format meters as kilometers."""
    if not meters:
        return "N/A"
    return f"{float(meters) / 1000:.1f} km"


def _merged_fields(record: CanonicalRecord) -> Dict[str, Any]:
    fields = dict(record.fields)
    for supplement in record.supplements:
        for key, value in supplement.fields.items():
            fields.setdefault(key, value)
    return fields


def summarize_record(record: CanonicalRecord) -> str:
    """One-line human summary of a record's main values."""
    fields = _merged_fields(record)
    if record.kind == WEIGHT:
        return f"{fields.get('value')} kg"
    if record.kind == BODY_FAT:
        return f"{fields.get('value')} %"
    if record.kind == SLEEP:
        stage = fields.get("stage")
        duration = format_duration(fields.get("duration_s"))
        return f"{duration} ({stage})" if stage else duration
    if record.kind == WORKOUT:
        exercises = fields.get("exercises") or []
        sets = sum(len(exercise.get("sets") or []) for exercise in exercises)
        label = fields.get("title") or fields.get("activity") or "Workout"
        parts = [str(label), format_duration(fields.get("duration_s"))]
        if exercises:
            parts.append(f"{len(exercises)} exercises / {sets} sets")
        if fields.get("distance_m"):
            parts.append(format_distance(fields.get("distance_m")))
        return ", ".join(parts)
    if record.kind == MEAL:
        items = [str(item.get("name")) for item in fields.get("items") or []]
        label = fields.get("name")
        return f"{label}: {', '.join(items)}" if label else ", ".join(items)
    return ""
