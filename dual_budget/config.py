"""Configuration management for the dual budget engine.

This module centralizes all configuration values including paths,
defaults, and environment variable overrides.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Base project root - assumes this file is in dual_budget/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("DUAL_BUDGET_DATA_DIR", _PROJECT_ROOT / "data"))
SNAPSHOT_DIR = Path(os.getenv("DUAL_BUDGET_SNAPSHOT_DIR", DATA_DIR / "snapshots"))

# Database
DB_PATH = Path(
    os.getenv("DUAL_BUDGET_DB_PATH", DATA_DIR / "dual-budget.db")
).resolve()

# Bucket catalog definition shipped with the package
BUCKETS_FILE = Path(
    os.getenv("DUAL_BUDGET_BUCKETS_FILE", Path(__file__).with_name("buckets.json"))
).resolve()

LOG_LEVEL = os.getenv("DUAL_BUDGET_LOG_LEVEL", "INFO")

# Engine constants
FORECAST_WINDOW_MONTHS = 6
ARCHIVE_MONTHS_BACK = 3
SIMILAR_PROJECTS_LIMIT = 5
UNCATEGORIZED_LABEL = "Uncategorized"
SCHEMA_VERSION = "1.1.0"


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, SNAPSHOT_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string."""
    return str(DB_PATH)


def load_json_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load a JSON configuration file.

    Args:
        path: File to read. Defaults to ``BUCKETS_FILE``.

    Returns:
        Dictionary containing the configuration

    Raises:
        FileNotFoundError: If the configuration file doesn't exist
        json.JSONDecodeError: If the configuration file is invalid JSON
    """
    config_path = Path(path) if path is not None else BUCKETS_FILE
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for command line use.

    Library modules only create loggers; this is called by entry points.
    """
    resolved = (level or LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
