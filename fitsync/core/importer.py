"""Drive import batches end-to-end: decode, canonicalize, resolve, record."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from fitsync.core.canonicalize import CanonicalizationError, canonicalize
from fitsync.core.config import EngineSettings
from fitsync.core.constants import (
    ERROR_CODE_CANCELLED,
    ERROR_CODE_CONTAINER,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PARSING,
    STATUS_RESOLVING,
)
from fitsync.core.models import ImportBatch
from fitsync.core.resolver import DISCARD, INSERT, MERGE, REPLACE, Resolver
from fitsync.core.store import ImportHistory, RecordStore, StorageError
from fitsync.decoders import ContainerError, DecodeStream, get_decoder

logger = logging.getLogger(__name__)

_COUNTERS = {
    INSERT: "inserted",
    REPLACE: "replaced",
    MERGE: "merged",
    DISCARD: "discarded_as_duplicate",
}


@dataclass(frozen=True)
class ImportJob:
    """One file queued for import."""

    source: str
    file_name: str
    raw_bytes: bytes

    @classmethod
    def from_path(cls, source: str, path: Path) -> "ImportJob":
        return cls(source=source, file_name=path.name, raw_bytes=path.read_bytes())


def _drain(stream: DecodeStream, batch: ImportBatch, seen: int) -> int:
    for error in stream.errors[seen:]:
        batch.record_error(error.raw_entry_ref, error.message, error.error_type)
    return len(stream.errors)


def _run(batch: ImportBatch, raw_bytes: bytes, resolver: Resolver, cancel: Optional[threading.Event]) -> None:
    batch.status = STATUS_PARSING
    try:
        stream = get_decoder(batch.source, batch.file_name).decode(raw_bytes)
    except ContainerError as exc:
        logger.warning("Import of %s failed: %s", batch.file_name, exc)
        batch.record_error(batch.file_name, str(exc), "ContainerError")
        batch.finish(STATUS_FAILED, ERROR_CODE_CONTAINER)
        return

    seen = 0
    cancelled = False
    for entry in stream:
        seen = _drain(stream, batch, seen)
        if cancel is not None and cancel.is_set():
            cancelled = True
            break
        if batch.status != STATUS_RESOLVING:
            batch.status = STATUS_RESOLVING

        try:
            record = canonicalize(entry, resolver.settings)
        except CanonicalizationError as exc:
            logger.warning("Skipping %s: %s", exc.ref, exc)
            batch.record_error(exc.ref, str(exc), "CanonicalizationError")
            continue

        try:
            resolution = resolver.resolve(record)
        except StorageError as exc:
            logger.warning("Store rejected %s: %s", entry.ref, exc)
            batch.record_error(entry.ref, str(exc), "StorageError")
            continue

        counter = _COUNTERS[resolution.action]
        setattr(batch, counter, getattr(batch, counter) + 1)

    _drain(stream, batch, seen)
    batch.skipped += stream.skipped

    if cancelled:
        logger.warning("Import of %s cancelled; committed records are kept", batch.file_name)
        batch.finish(STATUS_FAILED, ERROR_CODE_CANCELLED)
    else:
        batch.finish(STATUS_COMPLETED)


def import_file(
    source: str,
    raw_bytes: bytes,
    file_name: str,
    store: RecordStore,
    history: ImportHistory,
    settings: Optional[EngineSettings] = None,
    resolver: Optional[Resolver] = None,
    cancel: Optional[threading.Event] = None,
) -> ImportBatch:
    """Import one file and append the finished batch to ``history``.

    Per-entry problems are recorded on the batch and never abort it. Only an
    unreadable container or a set ``cancel`` event fail the batch, and records
    committed before that point stay committed.

    Args:
        source: Import source (``import_apple`` or ``import_hevy``).
        raw_bytes: File contents.
        file_name: Name used in history and error refs.
        store: Record store the resolver reads and writes.
        history: Import history receiving the final batch.
        settings: Engine settings; defaults when omitted.
        resolver: Shared resolver, for callers importing several files at once.
        cancel: Checked between records.

    Returns:
        The finished, frozen batch.
    """
    settings = settings or (resolver.settings if resolver is not None else EngineSettings())
    resolver = resolver or Resolver(store=store, settings=settings)
    batch = ImportBatch(source=source, file_name=file_name)
    logger.info("Importing %s from %s (batch %s)", file_name, source, batch.id)

    try:
        _run(batch, raw_bytes, resolver, cancel)
    finally:
        if not batch.is_finished:
            batch.finish(STATUS_FAILED)
        history.append(batch)

    logger.info(
        "Batch %s %s: %d inserted, %d replaced, %d merged, %d duplicates, %d skipped, %d errors",
        batch.id,
        batch.status,
        batch.inserted,
        batch.replaced,
        batch.merged,
        batch.discarded_as_duplicate,
        batch.skipped,
        len(batch.errors),
    )
    return batch


def import_files(
    jobs: Sequence[ImportJob],
    store: RecordStore,
    history: ImportHistory,
    settings: Optional[EngineSettings] = None,
    max_workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> List[ImportBatch]:
    """Import several files in parallel through one shared resolver.

    Returns batches in the order of ``jobs``.
    """
    settings = settings or EngineSettings()
    resolver = Resolver(store=store, settings=settings)
    workers = max(1, min(max_workers or settings.workers, len(jobs) or 1))

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(
                import_file,
                job.source,
                job.raw_bytes,
                job.file_name,
                store,
                history,
                settings,
                resolver,
                cancel,
            )
            for job in jobs
        ]
        return [future.result() for future in futures]
