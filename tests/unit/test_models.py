from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from fitsync.core.constants import SOURCE_APPLE, SOURCE_CHAT, STATUS_COMPLETED, STATUS_FAILED, WEIGHT
from fitsync.core.models import CanonicalRecord, ImportBatch, Supplement

WHEN = datetime(2024, 3, 1, 7, 30, tzinfo=timezone.utc)


def _record(**overrides) -> CanonicalRecord:
    values = dict(kind=WEIGHT, timestamp=WHEN, source=SOURCE_CHAT, fields={"value": 80.0, "unit": "kg"}, captured_at=WHEN)
    values.update(overrides)
    return CanonicalRecord(**values)


def test_record_rejects_unknown_kind_and_source() -> None:
    with pytest.raises(ValueError, match="kind"):
        _record(kind="StepCount")
    with pytest.raises(ValueError, match="source"):
        _record(source="garmin")


def test_record_ids_are_unique() -> None:
    assert _record().id != _record().id


def test_record_dict_round_trip_keeps_supplements() -> None:
    supplement = Supplement(source=SOURCE_APPLE, record_id="abc", added_at=WHEN, fields={"device": "Scale"})
    record = _record(supplements=(supplement,))
    payload = record.to_dict(detail_score=3)

    assert payload["detailScore"] == 3
    assert payload["supplements"][0]["recordId"] == "abc"
    restored = CanonicalRecord.from_dict(payload)
    assert restored == record
    assert restored.supplemented_keys() == {"device"}


def test_detail_score_is_only_emitted_when_given() -> None:
    assert "detailScore" not in _record().to_dict()


def test_batch_freezes_after_finish() -> None:
    batch = ImportBatch(source=SOURCE_APPLE, file_name="export.zip")
    batch.inserted += 1
    batch.record_error("export.xml:Record#1", "bad", "ParseError")
    batch.finish(STATUS_COMPLETED)

    assert batch.is_finished
    assert batch.finished_at is not None
    with pytest.raises(FrozenInstanceError):
        batch.inserted = 5
    with pytest.raises(FrozenInstanceError):
        batch.record_error("x", "late", "ParseError")
    with pytest.raises(AttributeError):
        batch.errors.append(None)  # type: ignore[attr-defined]


def test_batch_finish_requires_terminal_status() -> None:
    batch = ImportBatch(source=SOURCE_APPLE, file_name="export.zip")
    with pytest.raises(ValueError):
        batch.finish("resolving")


def test_batch_history_shape() -> None:
    batch = ImportBatch(source=SOURCE_APPLE, file_name="export.zip")
    batch.record_error("export.xml:Record#4", "missing value", "ParseError")
    batch.finish(STATUS_FAILED, error_code="container_error")
    entry = batch.to_history()

    assert set(entry) >= {
        "id",
        "source",
        "importedAt",
        "fileName",
        "status",
        "inserted",
        "replaced",
        "merged",
        "discardedAsDuplicate",
        "errors",
    }
    assert entry["errors"] == [
        {"rawEntryRef": "export.xml:Record#4", "message": "missing value", "errorType": "ParseError"}
    ]
    assert entry["errorCode"] == "container_error"
