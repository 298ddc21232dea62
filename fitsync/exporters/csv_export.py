"""CSV export of canonical records."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Dict, List, Sequence

from fitsync.core.models import CanonicalRecord
from fitsync.core.scoring import detail_score
from fitsync.utils.formatting import summarize_record

CSV_FIELDS = [
    "id",
    "kind",
    "timestamp",
    "source",
    "capturedAt",
    "detailScore",
    "summary",
    "fields",
    "supplementSources",
]


def record_row(record: CanonicalRecord, weights: Any = None) -> Dict[str, Any]:
    """Flatten one record into a CSV row; nested fields stay JSON-encoded."""
    return {
        "id": record.id,
        "kind": record.kind,
        "timestamp": record.timestamp.isoformat(),
        "source": record.source,
        "capturedAt": record.captured_at.isoformat(),
        "detailScore": detail_score(record, weights),
        "summary": summarize_record(record),
        "fields": json.dumps(record.fields, sort_keys=True),
        "supplementSources": ";".join(supplement.source for supplement in record.supplements),
    }


def write_csv(path: Path, records: Sequence[CanonicalRecord], weights: Any = None) -> Path:
    """Write records as CSV and return path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    rows: List[Dict[str, Any]] = [record_row(record, weights) for record in records]
    with path.open("w", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_FIELDS)
        writer.writeheader()
        writer.writerows(rows)
    return path
