"""Shared command helpers."""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator, Tuple

import typer

from fitsync.core.sqlite_store import SqliteDatabase, SqliteImportHistory, SqliteRecordStore
from fitsync.core.state import CLIState
from fitsync.core.store import StorageError


def get_state(ctx: typer.Context) -> CLIState:
    """Extract validated CLI state from Typer context."""
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=2)
    return state


def print_json_payload(state: CLIState, payload: Any) -> None:
    """Print JSON payload with plain-mode fallback for piping."""
    if state.plain_output:
        typer.echo(json.dumps(payload, separators=(",", ":")))
        return
    state.console.print_json(data=payload)


def fail(state: CLIState, message: str, prefix: str = "Error") -> None:
    """Report a command failure in the active output mode and exit 1."""
    if state.json_output:
        print_json_payload(state, {"status": "error", "message": message})
    elif state.plain_output:
        typer.echo("status\terror")
        typer.echo(f"message\t{message}")
    else:
        state.console.print(f"{prefix}: {message}")
    raise typer.Exit(code=1)


@contextmanager
def open_storage(state: CLIState) -> Iterator[Tuple[SqliteRecordStore, SqliteImportHistory]]:
    """Open the configured database for one command and close it afterwards."""
    database = SqliteDatabase(state.database_path)
    try:
        yield SqliteRecordStore(database), SqliteImportHistory(database)
    except StorageError as exc:
        fail(state, str(exc), prefix="Storage error")
    finally:
        database.close()
