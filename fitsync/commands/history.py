"""Import history command."""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from fitsync.commands.common import get_state, open_storage, print_json_payload


def history_command(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Show the N most recent batches"),
) -> None:
    """Show past import batches, newest first."""
    state = get_state(ctx)
    limit = limit or int(state.config.get("defaults", {}).get("history_limit", 20))

    with open_storage(state) as (_, history):
        entries = history.list(limit)

    if state.json_output:
        print_json_payload(state, {"history": entries})
        return

    if state.plain_output:
        typer.echo("imported_at\tsource\tfile\tstatus\tinserted\treplaced\tmerged\tduplicates\terrors")
        for entry in entries:
            typer.echo(
                "\t".join(
                    str(value)
                    for value in (
                        entry.get("importedAt"),
                        entry.get("source"),
                        entry.get("fileName"),
                        entry.get("status"),
                        entry.get("inserted"),
                        entry.get("replaced"),
                        entry.get("merged"),
                        entry.get("discardedAsDuplicate"),
                        len(entry.get("errors") or []),
                    )
                )
            )
        return

    if not entries:
        state.console.print("No imports yet")
        return

    table = Table(title="Import history")
    for column in ("Imported", "Source", "File", "Status", "Ins", "Repl", "Merged", "Dupes", "Errors"):
        table.add_column(column)
    for entry in entries:
        status = entry.get("status", "")
        if entry.get("errorCode"):
            status = f"{status} ({entry['errorCode']})"
        table.add_row(
            str(entry.get("importedAt", ""))[:19].replace("T", " "),
            str(entry.get("source", "")),
            str(entry.get("fileName", "")),
            status,
            str(entry.get("inserted", 0)),
            str(entry.get("replaced", 0)),
            str(entry.get("merged", 0)),
            str(entry.get("discardedAsDuplicate", 0)),
            str(len(entry.get("errors") or [])),
        )
    state.console.print(table)
