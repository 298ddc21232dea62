"""Manual and chat entry command."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from fitsync.commands.common import fail, get_state, open_storage, print_json_payload
from fitsync.core.canonicalize import CanonicalizationError, resolve_kind
from fitsync.core.constants import AUTHORITATIVE_SOURCES, BODY_FAT, MEAL, SLEEP, SOURCE_MANUAL, WEIGHT, WORKOUT
from fitsync.core.entry import EntryOutcome, log_entries, log_entry
from fitsync.core.models import utcnow
from fitsync.core.resolver import Resolver
from fitsync.utils.formatting import summarize_record
from fitsync.utils.parsing import load_entry_input

# Field that bare (non key=value) tokens fill for each kind.
_PRIMARY_FIELD = {
    WEIGHT: "value",
    BODY_FAT: "value",
    SLEEP: "duration",
    WORKOUT: "title",
    MEAL: "items",
}


def parse_values(kind: str, values: List[str]) -> Dict[str, Any]:
    """Turn ``VALUE...`` tokens into entry fields.

    ``key=value`` tokens set that field; bare tokens fill the kind's primary
    field (meal items accumulate, other kinds join them with spaces).
    """
    fields: Dict[str, Any] = {}
    bare: List[str] = []
    for token in values:
        key, sep, value = token.partition("=")
        if sep and key.strip():
            fields[key.strip()] = value.strip()
        else:
            bare.append(token)

    if bare:
        primary = _PRIMARY_FIELD[kind]
        if kind == MEAL:
            fields[primary] = [item.strip() for token in bare for item in token.split(",") if item.strip()]
        elif kind in {WEIGHT, BODY_FAT} and len(bare) == 2 and "unit" not in fields:
            fields[primary], fields["unit"] = bare
        else:
            fields[primary] = " ".join(bare)
    return fields


def _outcome_payload(outcome: EntryOutcome) -> Dict[str, Any]:
    if outcome.resolution is None:
        return {"ref": outcome.ref, "status": "error", "message": outcome.error}
    resolution = outcome.resolution
    return {
        "ref": outcome.ref,
        "status": resolution.action,
        "reason": resolution.reason,
        "record": resolution.record.to_dict(),
    }


def log_command(
    ctx: typer.Context,
    kind: Optional[str] = typer.Argument(None, help="Record kind: weight|bodyfat|sleep|workout|meal"),
    values: Optional[List[str]] = typer.Argument(None, help="Values or key=value fields"),
    at: Optional[str] = typer.Option(None, "--at", help="When the entry happened (defaults to now)"),
    source: str = typer.Option(SOURCE_MANUAL, "--source", help="Entry source: manual|chat"),
    file: Optional[Path] = typer.Option(None, "--file", help="JSON/YAML file with entries"),
    stdin: bool = typer.Option(False, "--stdin", help="Read entries from stdin"),
) -> None:
    """Log chat or manual entries through the reconciliation engine."""
    state = get_state(ctx)

    if source not in AUTHORITATIVE_SOURCES:
        raise typer.BadParameter("--source must be one of: manual, chat", param_hint="--source")

    stdin_text = sys.stdin.read() if stdin else ""
    try:
        entries = load_entry_input(file_path=file, read_stdin=stdin, stdin_text=stdin_text)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        fail(state, f"Cannot read entries: {exc}")

    if not entries:
        if not kind:
            raise typer.BadParameter("Provide KIND VALUE..., --file, or --stdin")
        try:
            resolved_kind = resolve_kind(kind)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="KIND")
        fields = parse_values(resolved_kind, values or [])
        entries = [{"kind": resolved_kind, "at": at or utcnow().isoformat(), "source": source, **fields}]

    with open_storage(state) as (store, _):
        resolver = Resolver(store=store, settings=state.settings)
        if len(entries) == 1 and file is None and not stdin:
            entry = entries[0]
            fields = {key: value for key, value in entry.items() if key not in {"kind", "at", "source"}}
            try:
                resolution = log_entry(resolver, entry["kind"], fields, entry["at"], source=source)
            except CanonicalizationError as exc:
                fail(state, str(exc), prefix="Invalid entry")
            outcomes = [EntryOutcome(ref="entry", resolution=resolution)]
        else:
            outcomes = log_entries(resolver, entries, default_source=source)

    payload = {"results": [_outcome_payload(outcome) for outcome in outcomes]}
    errors = [outcome for outcome in outcomes if not outcome.ok]

    if state.json_output:
        print_json_payload(state, payload)
    elif state.plain_output:
        typer.echo("ref\tstatus\tkind\ttimestamp\tid")
        for outcome in outcomes:
            if outcome.resolution is None:
                typer.echo(f"{outcome.ref}\terror\t\t\t{outcome.error}")
                continue
            record = outcome.resolution.record
            typer.echo(
                f"{outcome.ref}\t{outcome.resolution.action}\t{record.kind}\t{record.timestamp.isoformat()}\t{record.id}"
            )
    else:
        for outcome in outcomes:
            if outcome.resolution is None:
                state.console.print(f"[red]{outcome.ref}[/red]: {outcome.error}")
                continue
            record = outcome.resolution.record
            state.console.print(
                f"{outcome.resolution.action.capitalize()} {record.kind} at "
                f"{record.timestamp.isoformat()}: {summarize_record(record)}"
            )

    if errors:
        raise typer.Exit(code=1)
