"""Turn the date flags of record queries into store time windows."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import typer

from fitsync.utils.parsing import resolve_timezone

# Health exports routinely reach back further than any workout log.
EARLIEST_DATE = date(1970, 1, 1)
DEFAULT_DAYS = 30


def _bad_date(value: str) -> typer.BadParameter:
    return typer.BadParameter(f"Invalid date '{value}'. Expected format: YYYY-MM-DD (e.g. 2024-03-01)")


def parse_date(value: str) -> date:
    """Parse a strict YYYY-MM-DD string."""
    parsed = datetime.strptime(value, "%Y-%m-%d").date()
    if parsed.isoformat() != value:
        raise ValueError(f"Not a zero-padded date: {value}")
    return parsed


def validate_date(value: Optional[str]) -> Optional[str]:
    """Typer callback for --start-date/--end-date."""
    if value is None:
        return value
    try:
        parse_date(value)
    except ValueError:
        raise _bad_date(value)
    return value


def resolve_date_range(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    last_days: Optional[int] = None,
    all_time: bool = False,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """Resolve CLI date flags into an inclusive (start, end) pair.

    Explicit dates win over ``last_days``, which wins over ``all_time``. With
    no flags the range covers the last 30 days including today.
    """
    now = today or date.today()

    if start_date or end_date:
        start = parse_date(start_date) if start_date else EARLIEST_DATE
        end = parse_date(end_date) if end_date else now
    elif last_days:
        start, end = now - timedelta(days=max(last_days - 1, 0)), now
    elif all_time:
        start, end = EARLIEST_DATE, now
    else:
        start, end = now - timedelta(days=DEFAULT_DAYS - 1), now

    if start > end:
        raise typer.BadParameter(f"Start date {start} is after end date {end}")
    return start, end


def day_window(start: date, end: date, tz: str = "UTC") -> Tuple[datetime, datetime]:
    """Turn an inclusive local date range into a UTC datetime window."""
    zone = resolve_timezone(tz)
    window_start = datetime.combine(start, time.min, tzinfo=zone)
    window_end = datetime.combine(end, time.max, tzinfo=zone)
    return window_start.astimezone(timezone.utc), window_end.astimezone(timezone.utc)
