"""
Shared path utilities for cnsync data directories.
"""

from __future__ import annotations

import os
from pathlib import Path

DATA_DIR_ENV = "CNSYNC_DATA_DIR"


def get_default_data_dir() -> Path:
    """
    Get the default cnsync data directory.

    Returns ~/.cnsync or $CNSYNC_DATA_DIR if set.
    Creates the directory if it doesn't exist.
    """
    env_path = os.getenv(DATA_DIR_ENV)
    data_dir = Path(env_path) if env_path else Path.home() / ".cnsync"

    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_state_path(data_dir: Path | None = None) -> Path:
    """
    Get the path to the synchronizer state file.

    Args:
        data_dir: Optional data directory (defaults to get_default_data_dir())

    Returns:
        Path to sync_state.json in the data directory
    """
    if data_dir is None:
        data_dir = get_default_data_dir()
    return data_dir / "sync_state.json"
