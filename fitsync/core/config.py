"""Configuration loading and engine settings."""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # Python 3.9-3.10
    import tomli as tomllib  # type: ignore[no-redef]

from fitsync.core.constants import (
    DEFAULT_DETAIL_WEIGHTS,
    DEFAULT_TOLERANCE_SECONDS,
    RECORD_KINDS,
)
from fitsync.utils.parsing import resolve_timezone


class ConfigError(RuntimeError):
    """Raised when the config file or a setting in it is invalid."""


def _merge_sections(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay user settings on defaults, recursing into tables."""
    result = copy.deepcopy(defaults)
    for key, value in overrides.items():
        current = result.get(key)
        result[key] = (
            _merge_sections(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
        )
    return result


def expand_path(path_str: str) -> Path:
    """Expand ``~`` and environment variables into an absolute path."""
    return Path(os.path.expandvars(path_str)).expanduser().resolve()


def default_data_dir() -> Path:
    """Directory holding the record database; FITSYNC_DATA_DIR overrides it."""
    return expand_path(os.getenv("FITSYNC_DATA_DIR", "~/.local/share/fitsync"))


def default_config_path() -> Path:
    """Config file location; FITSYNC_CONFIG_FILE overrides it."""
    return expand_path(os.getenv("FITSYNC_CONFIG_FILE", "~/.config/fitsync/config.toml"))


def _default_config() -> Dict[str, Any]:
    return {
        "storage": {"database": str(default_data_dir() / "fitsync.db")},
        "matching": {"tolerance_seconds": dict(DEFAULT_TOLERANCE_SECONDS)},
        "scoring": copy.deepcopy(DEFAULT_DETAIL_WEIGHTS),
        "import": {"default_timezone": "UTC", "workers": 2},
        "defaults": {"history_limit": 20},
    }


def _parse_config_text(path: Path, text: str) -> Any:
    suffix = path.suffix.lower()
    if suffix == ".json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if suffix in {".yaml", ".yml"}:
        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the config file (TOML, JSON or YAML) on top of the defaults.

    A missing file is not an error; the defaults apply as they are.
    """
    cfg_path = path or default_config_path()
    if not cfg_path.exists():
        return _default_config()
    try:
        text = cfg_path.read_text()
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc
    loaded = _parse_config_text(cfg_path, text)
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {cfg_path} must contain an object/table at the root")
    return _merge_sections(_default_config(), loaded)


def resolve_database_path(config: Dict[str, Any], explicit: Optional[Path] = None) -> Path:
    """Resolve SQLite database path with CLI override first."""
    if explicit is not None:
        return explicit.expanduser().resolve()
    raw = os.getenv("FITSYNC_DATABASE") or config.get("storage", {}).get("database")
    if not raw:
        raw = str(default_data_dir() / "fitsync.db")
    return expand_path(raw)


@dataclass(frozen=True)
class EngineSettings:
    """Tunable reconciliation parameters resolved from config."""

    tolerance_seconds: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TOLERANCE_SECONDS))
    detail_weights: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_DETAIL_WEIGHTS)
    )
    default_timezone: str = "UTC"
    workers: int = 2

    def tolerance_for(self, kind: str) -> int:
        return int(self.tolerance_seconds.get(kind, 0))


def engine_settings_from_config(config: Dict[str, Any]) -> EngineSettings:
    """Build engine settings from config, falling back to defaults per kind."""
    tolerances = dict(DEFAULT_TOLERANCE_SECONDS)
    configured = config.get("matching", {}).get("tolerance_seconds", {})
    if isinstance(configured, dict):
        for kind, value in configured.items():
            if kind not in RECORD_KINDS:
                raise ConfigError(f"Unknown record kind in matching.tolerance_seconds: {kind}")
            try:
                seconds = int(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Tolerance for {kind} must be an integer: {value!r}") from exc
            if seconds < 0:
                raise ConfigError(f"Tolerance for {kind} must not be negative")
            tolerances[kind] = seconds

    weights = copy.deepcopy(DEFAULT_DETAIL_WEIGHTS)
    scoring = config.get("scoring", {})
    if isinstance(scoring, dict):
        for kind, table in scoring.items():
            if kind not in RECORD_KINDS:
                raise ConfigError(f"Unknown record kind in scoring: {kind}")
            if isinstance(table, dict):
                try:
                    weights[kind] = {str(key): int(value) for key, value in table.items()}
                except (TypeError, ValueError) as exc:
                    raise ConfigError(f"Scoring weights for {kind} must be integers") from exc

    import_cfg = config.get("import", {})
    tz_name = str(import_cfg.get("default_timezone") or "UTC")
    try:
        resolve_timezone(tz_name)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    try:
        workers = max(int(import_cfg.get("workers", 2)), 1)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"import.workers must be an integer: {import_cfg.get('workers')!r}") from exc

    return EngineSettings(
        tolerance_seconds=tolerances,
        detail_weights=weights,
        default_timezone=tz_name,
        workers=workers,
    )
