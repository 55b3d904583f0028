"""Base utilities and shared imports for CLI module."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..app import WorkflowApp
from ..core import EngineSettings, get_logger, setup_logging

logger = get_logger("cli")


def load_document(path: str | Path) -> Any:
    """Read a YAML or JSON document from disk.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the extension is unsupported or the content is malformed
    """
    file_path = Path(path).expanduser()
    if file_path.suffix not in (".yaml", ".yml", ".json"):
        raise ValueError(f"Unsupported file format: {file_path.suffix}")
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    text = file_path.read_text(encoding="utf-8")
    try:
        if file_path.suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Invalid content in {file_path}: {exc}") from exc


def load_settings(config: str | None) -> EngineSettings:
    """Settings from a YAML file, or from the environment when omitted."""
    if config is None:
        return EngineSettings()
    return EngineSettings.from_yaml(config)


__all__ = [
    "Console",
    "EngineSettings",
    "Panel",
    "Path",
    "Table",
    "WorkflowApp",
    "__version__",
    "get_logger",
    "load_document",
    "load_settings",
    "logger",
    "setup_logging",
]
