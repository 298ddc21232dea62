"""Import command for health exports and workout logs."""

from __future__ import annotations

from contextlib import nullcontext
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.table import Table

from fitsync.commands.common import fail, get_state, open_storage, print_json_payload
from fitsync.core.constants import IMPORT_SOURCE_BY_NAME, STATUS_COMPLETED
from fitsync.core.importer import ImportJob, import_files


def _guess_source(path: Path) -> Optional[str]:
    suffix = path.suffix.lower()
    if suffix in {".zip", ".xml"}:
        return IMPORT_SOURCE_BY_NAME["apple"]
    if suffix == ".csv":
        return IMPORT_SOURCE_BY_NAME["hevy"]
    return None


def import_command(
    ctx: typer.Context,
    files: List[Path] = typer.Argument(..., help="Export files to import", exists=True, dir_okay=False),
    source: Optional[str] = typer.Option(
        None,
        "--source",
        help="Import source: apple|hevy (guessed from the file extension when omitted)",
    ),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Files decoded in parallel"),
) -> None:
    """Import files and reconcile them with stored records."""
    state = get_state(ctx)

    if source and source.strip().lower() not in IMPORT_SOURCE_BY_NAME:
        raise typer.BadParameter("--source must be one of: apple, hevy", param_hint="--source")

    jobs: List[ImportJob] = []
    for path in files:
        resolved = IMPORT_SOURCE_BY_NAME.get(source.strip().lower()) if source else _guess_source(path)
        if resolved is None:
            raise typer.BadParameter(
                f"Cannot tell the source of {path.name}; pass --source apple|hevy",
                param_hint="--source",
            )
        try:
            jobs.append(ImportJob.from_path(resolved, path))
        except OSError as exc:
            fail(state, f"Cannot read {path}: {exc}")

    status_ctx = (
        state.console.status(f"Importing {len(jobs)} file(s)...")
        if not (state.plain_output or state.json_output)
        else nullcontext()
    )
    with open_storage(state) as (store, history), status_ctx:
        batches = import_files(
            jobs,
            store,
            history,
            settings=state.settings,
            max_workers=workers or state.settings.workers,
        )

    payload: Dict[str, Any] = {"batches": [batch.to_history() for batch in batches]}
    failed = [batch for batch in batches if batch.status != STATUS_COMPLETED]

    if state.json_output:
        print_json_payload(state, payload)
    elif state.plain_output:
        typer.echo("file\tstatus\tinserted\treplaced\tmerged\tduplicates\tskipped\terrors")
        for batch in batches:
            typer.echo(
                "\t".join(
                    str(value)
                    for value in (
                        batch.file_name,
                        batch.status,
                        batch.inserted,
                        batch.replaced,
                        batch.merged,
                        batch.discarded_as_duplicate,
                        batch.skipped,
                        len(batch.errors),
                    )
                )
            )
    else:
        table = Table(title=f"Imported {len(batches)} file(s)")
        for column in ("File", "Status", "Inserted", "Replaced", "Merged", "Duplicates", "Skipped", "Errors"):
            table.add_column(column)
        for batch in batches:
            table.add_row(
                batch.file_name,
                batch.status if not batch.error_code else f"{batch.status} ({batch.error_code})",
                str(batch.inserted),
                str(batch.replaced),
                str(batch.merged),
                str(batch.discarded_as_duplicate),
                str(batch.skipped),
                str(len(batch.errors)),
            )
        state.console.print(table)
        for batch in batches:
            for error in batch.errors[:10]:
                state.console.print(f"  {error.raw_entry_ref}: {error.message}")
            if len(batch.errors) > 10:
                state.console.print(f"  ... {len(batch.errors) - 10} more error(s) in {batch.file_name}")

    if failed:
        raise typer.Exit(code=1)
