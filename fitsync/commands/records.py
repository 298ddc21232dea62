"""Record listing and export commands."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.table import Table

from fitsync.commands.common import get_state, open_storage, print_json_payload
from fitsync.core.canonicalize import resolve_kind
from fitsync.core.models import CanonicalRecord
from fitsync.core.scoring import detail_score
from fitsync.core.state import CLIState
from fitsync.exporters.csv_export import write_csv
from fitsync.exporters.json_export import records_payload, write_json
from fitsync.utils.date_ranges import day_window, resolve_date_range, validate_date
from fitsync.utils.formatting import summarize_record


def _kind_argument(kind: str) -> str:
    try:
        return resolve_kind(kind)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="KIND")


def _load_records(
    state: CLIState,
    kind: str,
    start_date: Optional[str],
    end_date: Optional[str],
    last_days: Optional[int],
    all_time: bool,
) -> Dict[str, Any]:
    start, end = resolve_date_range(
        start_date=start_date,
        end_date=end_date,
        last_days=last_days,
        all_time=all_time,
    )
    window_start, window_end = day_window(start, end, state.settings.default_timezone)
    with open_storage(state) as (store, _):
        records = store.query_by_time_window(kind, window_start, window_end)
    return {
        "records": records,
        "date_range": {"start": start.strftime("%Y-%m-%d"), "end": end.strftime("%Y-%m-%d")},
    }


def records_command(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Record kind: weight|bodyfat|sleep|workout|meal"),
    start_date: Optional[str] = typer.Option(None, help="Start date (YYYY-MM-DD)", callback=validate_date),
    end_date: Optional[str] = typer.Option(None, help="End date (YYYY-MM-DD)", callback=validate_date),
    last_days: Optional[int] = typer.Option(None, help="Show last N days"),
    all_time: bool = typer.Option(False, "--all", help="Show all stored records"),
) -> None:
    """List stored records of one kind."""
    state = get_state(ctx)
    resolved = _kind_argument(kind)
    loaded = _load_records(state, resolved, start_date, end_date, last_days, all_time)
    records: List[CanonicalRecord] = loaded["records"]
    weights = state.settings.detail_weights

    if state.json_output:
        print_json_payload(
            state,
            {"kind": resolved, "records": records_payload(records, weights), "date_range": loaded["date_range"]},
        )
        return

    if state.plain_output:
        typer.echo("timestamp\tsource\tscore\tsummary\tid")
        for record in records:
            typer.echo(
                "\t".join(
                    [
                        record.timestamp.isoformat(),
                        record.source,
                        str(detail_score(record, weights)),
                        summarize_record(record),
                        record.id,
                    ]
                )
            )
        typer.echo(f"total\t{len(records)}")
        return

    table = Table(title=f"{resolved} ({len(records)} total)")
    table.add_column("Time")
    table.add_column("Source")
    table.add_column("Score")
    table.add_column("Summary")
    table.add_column("Supplemented by")
    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M"),
            record.source,
            str(detail_score(record, weights)),
            summarize_record(record),
            ", ".join(sorted({supplement.source for supplement in record.supplements})),
        )
    state.console.print(table)


def export_command(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Record kind: weight|bodyfat|sleep|workout|meal"),
    output_format: str = typer.Option("json", "--format", help="Export format: json|csv"),
    output: Optional[Path] = typer.Option(None, "--output", help="Output file"),
    start_date: Optional[str] = typer.Option(None, help="Start date (YYYY-MM-DD)", callback=validate_date),
    end_date: Optional[str] = typer.Option(None, help="End date (YYYY-MM-DD)", callback=validate_date),
    last_days: Optional[int] = typer.Option(None, help="Export last N days"),
    all_time: bool = typer.Option(True, "--all/--recent", help="Export every stored record"),
) -> None:
    """Export stored records of one kind as JSON or CSV."""
    state = get_state(ctx)

    if output_format not in {"json", "csv"}:
        raise typer.BadParameter("--format must be json|csv")

    resolved = _kind_argument(kind)
    loaded = _load_records(state, resolved, start_date, end_date, last_days, all_time)
    records: List[CanonicalRecord] = loaded["records"]
    weights = state.settings.detail_weights

    path = (output or Path(f"{resolved}.{output_format}")).expanduser()
    if output_format == "csv":
        write_csv(path, records, weights)
    else:
        write_json(path, {"kind": resolved, "records": records_payload(records, weights)})

    result = {"status": "exported", "format": output_format, "path": str(path), "count": len(records)}

    if state.json_output:
        print_json_payload(state, result)
        return

    if state.plain_output:
        for key in ("status", "format", "path", "count"):
            typer.echo(f"{key}\t{result[key]}")
        return

    state.console.print(f"Exported {len(records)} {resolved} records as {output_format} to {path}")
