"""Map decoder output and manual input onto canonical records.

Everything here is pure: the same entry and settings always produce the same
record content (only the generated ``id`` differs). Units are normalized to
kg, metres, seconds, kcal and percent; timestamps to aware UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from fitsync.core.config import EngineSettings
from fitsync.core.constants import (
    APPLE_METADATA_INDOOR,
    APPLE_METADATA_TIME_ZONE,
    APPLE_SLEEP_STAGES,
    AUTHORITATIVE_SOURCES,
    BODY_FAT,
    KIND_ALIASES,
    MEAL,
    RECORD_KINDS,
    SLEEP,
    SOURCE_APPLE,
    SOURCE_HEVY,
    WEIGHT,
    WORKOUT,
)
from fitsync.core.models import CanonicalRecord, HealthExportEntry, RawEntry, WorkoutLogEntry, utcnow
from fitsync.utils.parsing import (
    parse_number,
    parse_timestamp,
    to_kcal,
    to_kg,
    to_meters,
    to_percent,
    to_seconds,
)

_DEFAULT_SETTINGS = EngineSettings()


class CanonicalizationError(ValueError):
    """Raised when an entry lacks what is needed to identify its kind and time."""

    def __init__(self, ref: str, message: str) -> None:
        super().__init__(message)
        self.ref = ref


def _compact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value not in (None, "", [], {})}


def _timestamp(ref: str, value: Any, tz: str, label: str) -> datetime:
    try:
        return parse_timestamp(value, tz)
    except ValueError as exc:
        raise CanonicalizationError(ref, f"Invalid {label}: {exc}") from exc


def _number(ref: str, value: Any, label: str) -> Optional[float]:
    try:
        return parse_number(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise CanonicalizationError(ref, f"{label} is not numeric: {value!r}") from exc


def _whole_number(ref: str, value: Any, label: str) -> Optional[int]:
    number = _number(ref, value, label)
    return int(number) if number is not None else None


def _required_number(ref: str, value: Any, label: str) -> float:
    number = _number(ref, value, label)
    if number is None:
        raise CanonicalizationError(ref, f"Missing {label}")
    return number


def _convert(ref: str, func: Any, value: float, unit: Optional[str]) -> float:
    try:
        return func(value, unit)
    except ValueError as exc:
        raise CanonicalizationError(ref, str(exc)) from exc


def _span_seconds(ref: str, start: datetime, end: datetime) -> float:
    seconds = (end - start).total_seconds()
    if seconds < 0:
        raise CanonicalizationError(ref, f"Negative duration: ends {end.isoformat()} before it starts")
    return seconds


def item_key(item: Mapping[str, Any]) -> str:
    """Identity of a meal item within one meal."""
    return " ".join(str(item.get("name") or "").lower().split())


# Health export --------------------------------------------------------------


def _from_health_export(entry: HealthExportEntry, settings: EngineSettings) -> CanonicalRecord:
    ref = entry.ref
    attrs = entry.attributes
    tz = settings.default_timezone
    start = _timestamp(ref, attrs.get("startDate"), tz, "startDate")
    end = _timestamp(ref, attrs["endDate"], tz, "endDate") if attrs.get("endDate") else None
    captured_at = _timestamp(ref, attrs["creationDate"], tz, "creationDate") if attrs.get("creationDate") else None
    device = attrs.get("sourceName")

    if entry.tag == "weight":
        value = _required_number(ref, attrs.get("value"), "value")
        kind = WEIGHT
        fields = {"value": _convert(ref, to_kg, value, attrs.get("unit")), "unit": "kg", "device": device}
    elif entry.tag == "body_fat":
        value = _required_number(ref, attrs.get("value"), "value")
        kind = BODY_FAT
        fields = {"value": to_percent(value), "unit": "%", "device": device}
    elif entry.tag == "sleep":
        if end is None:
            raise CanonicalizationError(ref, "Sleep sample has no endDate")
        kind = SLEEP
        raw_stage = attrs.get("value", "")
        fields = {
            "end": end.isoformat(),
            "duration_s": _span_seconds(ref, start, end),
            "stage": APPLE_SLEEP_STAGES.get(raw_stage, raw_stage),
            "device": device,
        }
    elif entry.tag == "workout":
        kind = WORKOUT
        fields = _health_workout_fields(entry, start, end)
    else:
        raise CanonicalizationError(ref, f"Unsupported health export element: {entry.tag}")
    fields["time_zone"] = entry.metadata.get(APPLE_METADATA_TIME_ZONE)

    return CanonicalRecord(
        kind=kind,
        timestamp=start,
        source=SOURCE_APPLE,
        fields=_compact(fields),
        captured_at=captured_at or end or start,
    )


def _health_workout_fields(entry: HealthExportEntry, start: datetime, end: Optional[datetime]) -> Dict[str, Any]:
    ref = entry.ref
    attrs = entry.attributes

    duration = _number(ref, attrs.get("duration"), "duration")
    if duration is not None:
        if duration < 0:
            raise CanonicalizationError(ref, f"Negative duration: {duration}")
        duration_s: Optional[float] = _convert(ref, to_seconds, duration, attrs.get("durationUnit") or "min")
    elif end is not None:
        duration_s = _span_seconds(ref, start, end)
    else:
        duration_s = None

    distance = _number(ref, attrs.get("totalDistance"), "totalDistance")
    energy = _number(ref, attrs.get("totalEnergyBurned"), "totalEnergyBurned")
    activity = str(attrs.get("workoutActivityType") or "").replace("HKWorkoutActivityType", "")
    indoor = entry.metadata.get(APPLE_METADATA_INDOOR, "").strip().lower()

    return {
        "activity": activity,
        "duration_s": duration_s,
        "distance_m": (
            _convert(ref, to_meters, distance, attrs.get("totalDistanceUnit") or "km") if distance else None
        ),
        "energy_kcal": (
            _convert(ref, to_kcal, energy, attrs.get("totalEnergyBurnedUnit") or "kcal") if energy else None
        ),
        "device": attrs.get("sourceName"),
        "indoor": indoor in {"1", "true", "yes"} if indoor else None,
    }


# Workout log ----------------------------------------------------------------


def _set_load(ref: str, row: Mapping[str, str]) -> Optional[float]:
    if row.get("weight_kg"):
        return _convert(ref, to_kg, _required_number(ref, row["weight_kg"], "weight_kg"), "kg")
    if row.get("weight_lbs"):
        return _convert(ref, to_kg, _required_number(ref, row["weight_lbs"], "weight_lbs"), "lb")
    if row.get("weight"):
        return _convert(ref, to_kg, _required_number(ref, row["weight"], "weight"), row.get("unit") or "kg")
    return None


def _log_exercises(ref: str, rows: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    exercises: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        name = row.get("exercise") or ""
        exercise = exercises.setdefault(name, {"name": name, "sets": []})
        if row.get("exercise_notes") and not exercise.get("notes"):
            exercise["notes"] = row["exercise_notes"]

        index = _whole_number(ref, row.get("set_index"), "set_index")
        reps = _whole_number(ref, row.get("reps"), "reps")
        distance_km = _number(ref, row.get("distance_km"), "distance_km")
        duration = _number(ref, row.get("duration_seconds"), "duration_seconds")
        exercise["sets"].append(
            _compact(
                {
                    "index": index if index is not None else len(exercise["sets"]),
                    "reps": reps,
                    "load_kg": _set_load(ref, row),
                    "type": row.get("set_type"),
                    "distance_m": to_meters(distance_km, "km") if distance_km else None,
                    "duration_s": duration,
                }
            )
        )
    return list(exercises.values())


def _from_workout_log(entry: WorkoutLogEntry, settings: EngineSettings) -> CanonicalRecord:
    ref = entry.ref
    rows = list(entry.rows)
    if not rows:
        raise CanonicalizationError(ref, "Workout session has no rows")

    first = rows[0]
    tz = settings.default_timezone
    start = _timestamp(ref, first.get("start") or first.get("session"), tz, "session start")
    end = _timestamp(ref, first["end"], tz, "session end") if first.get("end") else None

    exercises = _log_exercises(ref, rows)
    set_distances = [item.get("distance_m") for exercise in exercises for item in exercise["sets"]]
    total_distance = sum(value for value in set_distances if value)

    fields = {
        "activity": "strength_training",
        "title": first.get("title"),
        "notes": first.get("notes"),
        "duration_s": _span_seconds(ref, start, end) if end is not None else None,
        "distance_m": round(total_distance, 1) if total_distance else None,
        "exercises": exercises,
    }
    return CanonicalRecord(
        kind=WORKOUT,
        timestamp=start,
        source=SOURCE_HEVY,
        fields=_compact(fields),
        captured_at=end or start,
    )


def canonicalize(entry: RawEntry, settings: EngineSettings = _DEFAULT_SETTINGS) -> CanonicalRecord:
    """Turn one decoder entry into a canonical record."""
    if isinstance(entry, HealthExportEntry):
        return _from_health_export(entry, settings)
    if isinstance(entry, WorkoutLogEntry):
        return _from_workout_log(entry, settings)
    raise CanonicalizationError(getattr(entry, "ref", "?"), f"Unsupported raw entry: {type(entry).__name__}")


# Manual / chat entries -------------------------------------------------------


def resolve_kind(value: str) -> str:
    """Accept canonical kind names or short aliases like ``weight``."""
    if value in RECORD_KINDS:
        return value
    kind = KIND_ALIASES.get(value.strip().lower())
    if kind is None:
        raise ValueError(f"Unknown record kind: {value}")
    return kind


def _entry_sets(ref: str, raw_sets: Any) -> List[Dict[str, Any]]:
    sets: List[Dict[str, Any]] = []
    for position, item in enumerate(raw_sets or []):
        if not isinstance(item, Mapping):
            raise CanonicalizationError(ref, f"Set {position} must be a mapping")
        reps = _whole_number(ref, item.get("reps"), "reps")
        index = _whole_number(ref, item.get("index"), "index")
        load = _number(ref, item.get("load", item.get("weight")), "load")
        sets.append(
            {
                "index": index if index is not None else position,
                "reps": reps,
                "load_kg": _convert(ref, to_kg, load, item.get("unit") or "kg") if load is not None else None,
            }
        )
    return sets


def _entry_fields(ref: str, kind: str, raw: Mapping[str, Any], start: datetime, tz: str) -> Dict[str, Any]:
    notes = raw.get("notes")
    if kind == WEIGHT:
        value = _required_number(ref, raw.get("value"), "value")
        return {"value": _convert(ref, to_kg, value, raw.get("unit") or "kg"), "unit": "kg", "notes": notes}
    if kind == BODY_FAT:
        value = _required_number(ref, raw.get("value"), "value")
        return {"value": to_percent(value), "unit": "%", "notes": notes}
    if kind == SLEEP:
        if raw.get("end"):
            end = _timestamp(ref, raw["end"], tz, "end")
            duration_s = _span_seconds(ref, start, end)
        else:
            duration = _required_number(ref, raw.get("duration"), "duration")
            if duration < 0:
                raise CanonicalizationError(ref, f"Negative duration: {duration}")
            duration_s = _convert(ref, to_seconds, duration, raw.get("duration_unit") or "h")
            end = None
        return {
            "end": end.isoformat() if end else None,
            "duration_s": duration_s,
            "stage": raw.get("stage"),
            "notes": notes,
        }
    if kind == WORKOUT:
        exercises = []
        for item in raw.get("exercises") or []:
            if not isinstance(item, Mapping):
                raise CanonicalizationError(ref, "Exercises must be mappings")
            exercises.append(_compact({"name": item.get("name"), "sets": _entry_sets(ref, item.get("sets"))}))
        duration = _number(ref, raw.get("duration"), "duration")
        return {
            "activity": raw.get("activity"),
            "title": raw.get("title"),
            "notes": notes,
            "duration_s": _convert(ref, to_seconds, duration, raw.get("duration_unit") or "min") if duration else None,
            "exercises": exercises,
        }
    if kind == MEAL:
        items = []
        for item in raw.get("items") or []:
            if isinstance(item, str):
                item = {"name": item}
            if not isinstance(item, Mapping) or not item_key(item):
                raise CanonicalizationError(ref, "Meal items need a name")
            calories = _number(ref, item.get("calories"), "calories")
            items.append(_compact({"name": str(item["name"]).strip(), "calories": calories, "quantity": item.get("quantity")}))
        if not items:
            raise CanonicalizationError(ref, "Meal has no items")
        return {"name": raw.get("name"), "notes": notes, "items": items}
    raise CanonicalizationError(ref, f"Unsupported kind: {kind}")


def build_entry_record(
    kind: str,
    fields: Mapping[str, Any],
    timestamp: Any,
    source: str,
    settings: EngineSettings = _DEFAULT_SETTINGS,
    captured_at: Optional[datetime] = None,
    ref: str = "entry",
) -> CanonicalRecord:
    """Canonicalize a chat or manual entry."""
    if source not in AUTHORITATIVE_SOURCES:
        raise CanonicalizationError(ref, f"Entries must come from chat or manual, not {source}")
    try:
        resolved_kind = resolve_kind(kind)
    except ValueError as exc:
        raise CanonicalizationError(ref, str(exc)) from exc

    tz = settings.default_timezone
    start = _timestamp(ref, timestamp, tz, "timestamp")
    return CanonicalRecord(
        kind=resolved_kind,
        timestamp=start,
        source=source,
        fields=_compact(_entry_fields(ref, resolved_kind, fields, start, tz)),
        captured_at=captured_at or utcnow(),
    )
