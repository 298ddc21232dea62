from __future__ import annotations

import threading
from datetime import timedelta

from builders import (
    BASE_TIME,
    apple_document,
    apple_sleep,
    apple_weight,
    hevy_csv,
    hevy_rows,
    zip_bytes,
)
from fitsync.core.constants import (
    ERROR_CODE_CANCELLED,
    ERROR_CODE_CONTAINER,
    SLEEP,
    SOURCE_APPLE,
    SOURCE_CHAT,
    SOURCE_HEVY,
    STATUS_COMPLETED,
    STATUS_FAILED,
    WEIGHT,
    WORKOUT,
)
from fitsync.core.entry import log_entry
from fitsync.core.importer import ImportJob, import_file, import_files
from fitsync.core.resolver import Resolver
from fitsync.core.scoring import detail_score
from fitsync.core.store import MemoryRecordStore, StorageError


class CancelAfter(threading.Event):
    """Event that reports set after a number of checks."""

    def __init__(self, checks: int) -> None:
        super().__init__()
        self.remaining = checks

    def is_set(self) -> bool:
        self.remaining -= 1
        return self.remaining < 0


class RejectingStore(MemoryRecordStore):
    def __init__(self, reject_value: float) -> None:
        super().__init__()
        self.reject_value = reject_value

    def put(self, record) -> None:
        if record.fields.get("value") == self.reject_value:
            raise StorageError("constraint failed")
        super().put(record)


def _weights_archive(count: int, start_kg: float = 80.0) -> bytes:
    records = [apple_weight(BASE_TIME + timedelta(days=day), start_kg + day / 10) for day in range(count)]
    return zip_bytes({"apple_health_export/export.xml": apple_document(records)})


def test_health_export_archive_with_one_negative_sleep_sample(store, history) -> None:
    samples = [
        apple_sleep(BASE_TIME + timedelta(minutes=10 * index), BASE_TIME + timedelta(minutes=10 * index + 8))
        for index in range(50)
    ]
    negative_start = BASE_TIME + timedelta(days=2)
    samples.append(apple_sleep(negative_start, negative_start - timedelta(minutes=30)))
    archive = zip_bytes({"apple_health_export/export.xml": apple_document(samples)})

    batch = import_file(SOURCE_APPLE, archive, "export.zip", store, history)

    assert batch.status == STATUS_COMPLETED
    assert batch.inserted == 50
    assert len(batch.errors) == 1
    assert batch.errors[0].error_type == "CanonicalizationError"
    assert "Negative duration" in batch.errors[0].message
    assert len(store.all(SLEEP)) == 50
    assert history.list()[0]["status"] == STATUS_COMPLETED


def test_one_bad_row_in_a_hundred_is_isolated(store, history) -> None:
    rows = []
    for index in range(100):
        rows.extend(hevy_rows(BASE_TIME + timedelta(hours=index), sets=[{"weight_kg": "80", "reps": "8"}]))
    rows[42]["reps"] = "eight"

    batch = import_file(SOURCE_HEVY, hevy_csv(rows), "workouts.csv", store, history)

    assert batch.status == STATUS_COMPLETED
    assert batch.inserted == 99
    assert len(batch.errors) == 1
    assert batch.errors[0].raw_entry_ref == "workouts.csv:line 44"
    assert len(store.all(WORKOUT)) == 99


def test_non_finite_cell_is_isolated_to_its_row(store, history) -> None:
    rows = []
    for index in range(3):
        rows.extend(
            hevy_rows(
                BASE_TIME + timedelta(hours=index),
                sets=[{"weight_kg": "80", "reps": "8"}, {"weight_kg": "85", "reps": "6"}],
            )
        )
    rows[3]["reps"] = "nan"

    batch = import_file(SOURCE_HEVY, hevy_csv(rows), "workouts.csv", store, history)

    assert batch.status == STATUS_COMPLETED
    assert batch.inserted == 3
    assert [error.error_type for error in batch.errors] == ["ParseError"]
    assert batch.errors[0].raw_entry_ref == "workouts.csv:line 5"
    assert history.list()[0]["status"] == STATUS_COMPLETED


def test_reimporting_the_same_file_is_idempotent(store, history) -> None:
    archive = _weights_archive(5)
    first = import_file(SOURCE_APPLE, archive, "export.zip", store, history)
    before = {record.id: record for record in store.all()}

    second = import_file(SOURCE_APPLE, archive, "export.zip", store, history)

    assert first.inserted == 5
    assert (second.inserted, second.replaced, second.merged) == (0, 0, 0)
    assert second.discarded_as_duplicate == 5
    assert {record.id: record for record in store.all()} == before
    assert len(history.list()) == 2


def test_import_supplements_an_earlier_chat_weight(store, history) -> None:
    resolver = Resolver(store=store)
    chat = log_entry(resolver, "weight", {"value": 80.0}, BASE_TIME, source=SOURCE_CHAT).record
    archive = zip_bytes(
        {"export.xml": apple_document([apple_weight(BASE_TIME + timedelta(seconds=60), 80.2, source_name="Smart Scale")])}
    )

    batch = import_file(SOURCE_APPLE, archive, "export.zip", store, history, resolver=resolver)

    assert batch.merged == 1
    (stored,) = store.all(WEIGHT)
    assert stored.id == chat.id
    assert stored.source == SOURCE_CHAT
    assert stored.fields["value"] == 80.0
    assert stored.supplements[0].fields == {"device": "Smart Scale"}
    assert stored.supplements[0].source == SOURCE_APPLE

    again = import_file(SOURCE_APPLE, archive, "export.zip", store, history, resolver=resolver)
    assert again.discarded_as_duplicate == 1
    assert len(store.all(WEIGHT)[0].supplements) == 1


def test_richer_reimport_replaces_session_with_fresh_id(store, history, three_set_session) -> None:
    first = import_file(SOURCE_HEVY, hevy_csv(three_set_session), "workouts.csv", store, history)
    (original,) = store.all(WORKOUT)
    assert first.inserted == 1
    assert detail_score(original) == 6

    annotated = [dict(row, description="Felt strong") for row in three_set_session]
    second = import_file(SOURCE_HEVY, hevy_csv(annotated), "workouts.csv", store, history)

    assert second.replaced == 1
    (replacement,) = store.all(WORKOUT)
    assert detail_score(replacement) == 7
    assert replacement.id != original.id
    assert replacement.fields["notes"] == "Felt strong"


def test_unreadable_container_fails_batch_and_is_recorded(store, history) -> None:
    batch = import_file(SOURCE_APPLE, b"definitely not a zip", "export.zip", store, history)

    assert batch.status == STATUS_FAILED
    assert batch.error_code == ERROR_CODE_CONTAINER
    assert batch.finished_at is not None
    assert len(store) == 0
    (entry,) = history.list()
    assert entry["errorCode"] == ERROR_CODE_CONTAINER
    assert entry["status"] == STATUS_FAILED


def test_cancellation_keeps_committed_records(store, history) -> None:
    batch = import_file(SOURCE_APPLE, _weights_archive(10), "export.zip", store, history, cancel=CancelAfter(3))

    assert batch.status == STATUS_FAILED
    assert batch.error_code == ERROR_CODE_CANCELLED
    assert batch.inserted == 3
    assert len(store.all(WEIGHT)) == 3
    assert history.list()[0]["errorCode"] == ERROR_CODE_CANCELLED


def test_storage_error_is_recorded_per_entry(history) -> None:
    store = RejectingStore(reject_value=80.2)
    batch = import_file(SOURCE_APPLE, _weights_archive(4), "export.zip", store, history)

    assert batch.status == STATUS_COMPLETED
    assert batch.inserted == 3
    assert [error.error_type for error in batch.errors] == ["StorageError"]


def test_decode_errors_and_skips_reach_the_batch(store, history) -> None:
    broken = '<Record type="HKQuantityTypeIdentifierBodyMass" startDate="2024-03-01 07:30:00 +0000"/>'
    steps = '<Record type="HKQuantityTypeIdentifierStepCount" startDate="2024-03-01 07:30:00 +0000" value="10"/>'
    archive = zip_bytes({"export.xml": apple_document([broken, steps, apple_weight(BASE_TIME, 80.0)])})

    batch = import_file(SOURCE_APPLE, archive, "export.zip", store, history)

    assert batch.inserted == 1
    assert batch.skipped == 1
    assert [error.error_type for error in batch.errors] == ["ParseError"]


def test_import_files_runs_jobs_in_parallel(store, history, three_set_session) -> None:
    jobs = [
        ImportJob(source=SOURCE_APPLE, file_name="export.zip", raw_bytes=_weights_archive(3)),
        ImportJob(source=SOURCE_HEVY, file_name="workouts.csv", raw_bytes=hevy_csv(three_set_session)),
        ImportJob(source=SOURCE_APPLE, file_name="copy.zip", raw_bytes=_weights_archive(3)),
    ]

    batches = import_files(jobs, store, history, max_workers=3)

    assert [batch.file_name for batch in batches] == ["export.zip", "workouts.csv", "copy.zip"]
    assert all(batch.status == STATUS_COMPLETED for batch in batches)
    assert batches[0].inserted + batches[2].inserted == 3
    assert batches[0].discarded_as_duplicate + batches[2].discarded_as_duplicate == 3
    assert len(store.all(WEIGHT)) == 3
    assert len(store.all(WORKOUT)) == 1
    assert len(history.list()) == 3


def test_import_job_from_path(tmp_path) -> None:
    path = tmp_path / "workouts.csv"
    path.write_bytes(b"title\n")
    job = ImportJob.from_path(SOURCE_HEVY, path)
    assert (job.file_name, job.raw_bytes) == ("workouts.csv", b"title\n")
