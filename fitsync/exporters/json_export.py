"""JSON export of canonical records."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Sequence

from fitsync.core.models import CanonicalRecord
from fitsync.core.scoring import detail_score


def records_payload(records: Sequence[CanonicalRecord], weights: Any = None) -> List[Dict[str, Any]]:
    """Serialize records with their current detail score attached."""
    return [record.to_dict(detail_score=detail_score(record, weights)) for record in records]


def write_json(path: Path, payload: Any) -> Path:
    """Write payload as pretty JSON and return path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")
    return path
