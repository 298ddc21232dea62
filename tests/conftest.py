from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import pytest
from typer.testing import CliRunner

from builders import BASE_TIME, hevy_rows
from fitsync.core.store import MemoryImportHistory, MemoryRecordStore


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture()
def history() -> MemoryImportHistory:
    return MemoryImportHistory()


@pytest.fixture()
def three_set_session() -> List[Dict[str, str]]:
    return hevy_rows(
        BASE_TIME,
        sets=[
            {"weight_kg": "60", "reps": "10"},
            {"weight_kg": "70", "reps": "8"},
            {"weight_kg": "80", "reps": "6"},
        ],
    )


@pytest.fixture()
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point config and database at a temp dir for CLI tests."""
    monkeypatch.setenv("FITSYNC_CONFIG_FILE", str(tmp_path / "config.toml"))
    monkeypatch.setenv("FITSYNC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("FITSYNC_DATABASE", raising=False)
    return tmp_path


@pytest.fixture()
def write_temp_toml(tmp_path: Path):
    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(content.strip() + "\n")
        return path

    return _write
