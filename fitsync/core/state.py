"""Runtime state container for CLI context."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from rich.console import Console

from fitsync.core.config import EngineSettings


@dataclass
class CLIState:
    """CLI runtime options, loaded configuration and resolved engine settings."""

    json_output: bool
    plain_output: bool
    verbose: bool
    quiet: bool
    config_path: Path
    config: Dict[str, Any]
    console: Console
    settings: EngineSettings
    database_path: Path
