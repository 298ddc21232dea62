"""Parsing helpers for timestamps, units and entry input files."""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from fitsync.core.constants import (
    DISTANCE_TO_M,
    DURATION_TO_S,
    ENERGY_TO_KCAL,
    MASS_TO_KG,
    TIMESTAMP_FORMATS,
)


def resolve_timezone(name: str) -> ZoneInfo:
    """Return a ZoneInfo for an IANA name, raising ValueError if unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone '{name}'. Use IANA timezone identifiers.") from exc


def parse_timestamp(value: Any, default_tz: str = "UTC") -> datetime:
    """Parse a timestamp string into an aware UTC datetime.

    Accepts the health-export format (``2024-01-01 08:00:00 +0100``),
    ISO 8601 and the workout-log format (``12 Jan 2024, 07:30``). Naive
    values are interpreted in ``default_tz``.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value or "").strip()
        if not raw:
            raise ValueError("Empty timestamp")
        parsed_or_none: Optional[datetime] = None
        try:
            parsed_or_none = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            for fmt in TIMESTAMP_FORMATS:
                try:
                    parsed_or_none = datetime.strptime(raw, fmt)
                    break
                except ValueError:
                    continue
        if parsed_or_none is None:
            raise ValueError(f"Unrecognized timestamp format: {raw!r}")
        parsed = parsed_or_none

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=resolve_timezone(default_tz))
    return parsed.astimezone(timezone.utc)


def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric cell; empty cells are None, garbage raises ValueError."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        raw = str(value).strip()
        if not raw:
            return None
        number = float(raw.replace(",", "."))
    if not math.isfinite(number):
        raise ValueError(f"Not a finite number: {value!r}")
    return number


def _convert(value: float, unit: Optional[str], table: Mapping[str, float], default: str, label: str) -> float:
    key = (unit or default).strip().lower()
    if key not in table:
        raise ValueError(f"Unsupported {label} unit: {unit}")
    return value * table[key]


def to_kg(value: float, unit: Optional[str] = "kg") -> float:
    return round(_convert(value, unit, MASS_TO_KG, "kg", "mass"), 3)


def to_meters(value: float, unit: Optional[str] = "m") -> float:
    return round(_convert(value, unit, DISTANCE_TO_M, "m", "distance"), 1)


def to_seconds(value: float, unit: Optional[str] = "s") -> float:
    return round(_convert(value, unit, DURATION_TO_S, "s", "duration"), 1)


def to_kcal(value: float, unit: Optional[str] = "kcal") -> float:
    return round(_convert(value, unit, ENERGY_TO_KCAL, "kcal", "energy"), 1)


def to_percent(value: float) -> float:
    """Normalize body-fat style values; fractions are scaled to percent."""
    return round(value * 100.0 if 0 <= value <= 1 else value, 2)


def load_entry_input(file_path: Optional[Path], read_stdin: bool, stdin_text: str = "") -> List[Dict[str, Any]]:
    """Load manual entry object(s) from file or stdin text."""
    raw_data: Any
    if file_path:
        text = file_path.read_text()
        if file_path.suffix.lower() in {".yaml", ".yml"}:
            raw_data = yaml.safe_load(text)
        else:
            raw_data = json.loads(text)
    elif read_stdin:
        text = stdin_text.strip()
        if not text:
            return []
        try:
            raw_data = json.loads(text)
        except json.JSONDecodeError:
            raw_data = yaml.safe_load(text)
    else:
        return []

    if isinstance(raw_data, dict):
        return [raw_data]
    if isinstance(raw_data, list):
        return [item for item in raw_data if isinstance(item, dict)]
    return []
