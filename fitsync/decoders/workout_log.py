"""Decoder for tabular workout-log exports (one row per set)."""

from __future__ import annotations

import csv
import io
import logging
from typing import Dict, Iterator, List, Optional, Sequence

from fitsync.core.constants import HEVY_COLUMN_ALIASES, HEVY_REQUIRED_COLUMNS, SOURCE_HEVY
from fitsync.core.models import WorkoutLogEntry
from fitsync.decoders.base import ContainerError, Decoder, DecodeStream, ParseError
from fitsync.utils.parsing import parse_number

logger = logging.getLogger(__name__)

_NUMERIC_COLUMNS = ("set_index", "reps", "weight_kg", "weight_lbs", "weight", "distance_km", "duration_seconds")


def resolve_columns(fieldnames: Sequence[str]) -> Dict[str, str]:
    """Map logical column names to the header names present in the file."""
    normalized = {name.strip().lower(): name for name in fieldnames if name}
    columns: Dict[str, str] = {}
    for logical, aliases in HEVY_COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                columns[logical] = normalized[alias]
                break
    return columns


def normalize_row(row: Dict[Optional[str], Optional[str]], columns: Dict[str, str], ref: str) -> Dict[str, str]:
    """Project a CSV row onto logical column names, validating numeric cells."""
    if None in row:
        raise ParseError(ref, "Row has more cells than the header")

    values = {logical: str(row.get(header) or "").strip() for logical, header in columns.items()}
    if not values.get("session"):
        raise ParseError(ref, "Row has no session identifier")

    for column in _NUMERIC_COLUMNS:
        raw = values.get(column)
        if not raw:
            continue
        try:
            parse_number(raw)
        except ValueError:
            raise ParseError(ref, f"Column {columns[column]!r} is not numeric: {raw!r}") from None
    return values


class WorkoutLogDecoder(Decoder):
    """Group workout-log rows into sessions of consecutive rows sharing a key."""

    name = SOURCE_HEVY

    def __init__(self, file_name: str = "workouts.csv") -> None:
        self.file_name = file_name

    def decode(self, data: bytes) -> DecodeStream:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ContainerError(f"Workout log is not valid UTF-8: {exc}") from exc

        reader = csv.DictReader(io.StringIO(text, newline=""))
        try:
            fieldnames = reader.fieldnames
        except csv.Error as exc:
            raise ContainerError(f"Unreadable workout log header: {exc}") from exc
        if not fieldnames:
            raise ContainerError("Workout log has no header row")

        columns = resolve_columns(fieldnames)
        missing = [name for name in HEVY_REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise ContainerError(f"Workout log is missing required columns: {', '.join(missing)}")

        logger.debug("Workout log columns: %s", columns)
        return DecodeStream(lambda stream: self._iter_sessions(reader, columns, stream))

    def _iter_sessions(
        self,
        reader: "csv.DictReader[str]",
        columns: Dict[str, str],
        stream: DecodeStream,
    ) -> Iterator[WorkoutLogEntry]:
        current_key: Optional[str] = None
        current_rows: List[Dict[str, str]] = []
        first_line = 0

        while True:
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as exc:
                stream.report(ParseError(f"{self.file_name}:line {reader.line_num}", f"Malformed CSV line: {exc}"))
                continue

            ref = f"{self.file_name}:line {reader.line_num}"
            try:
                values = normalize_row(row, columns, ref)
            except ParseError as exc:
                stream.report(exc)
                continue

            if values["session"] != current_key:
                if current_rows:
                    yield self._session(current_key, current_rows, first_line)
                current_key = values["session"]
                current_rows = []
                first_line = reader.line_num
            current_rows.append(values)

        if current_rows:
            yield self._session(current_key, current_rows, first_line)

    def _session(self, key: Optional[str], rows: List[Dict[str, str]], first_line: int) -> WorkoutLogEntry:
        return WorkoutLogEntry(
            decoder=SOURCE_HEVY,
            ref=f"{self.file_name}:session {key} (line {first_line})",
            session_key=str(key),
            rows=tuple(rows),
        )
