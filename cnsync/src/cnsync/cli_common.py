"""
Common CLI helpers: logging setup, settings resolution and daemon creation.
"""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from cnsync.backends.http_daemon import HttpDaemon
from cnsync.paths import get_state_path
from cnsync.settings import SyncSettings, get_settings, reset_settings


def setup_logging(level: str = "INFO") -> None:
    """
    Configure loguru logging with consistent format.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(log_level: str | None = None, data_dir: Path | None = None) -> SyncSettings:
    """
    Common CLI setup: reset settings cache, configure logging, return settings.

    Log level priority: CLI argument > settings (env/config) > default "INFO"
    """
    reset_settings()
    settings = get_settings(data_dir=data_dir) if data_dir is not None else get_settings()

    effective_log_level = log_level if log_level is not None else settings.logging.level
    setup_logging(effective_log_level)

    return settings


def resolve_state_path(settings: SyncSettings, state_file: Path | None = None) -> Path:
    """State file from the CLI option, else sync_state.json in the data directory."""
    if state_file is not None:
        return state_file
    return get_state_path(settings.get_data_dir())


def create_daemon(
    settings: SyncSettings,
    host: str | None = None,
    port: int | None = None,
) -> HttpDaemon:
    """Create the daemon client, CLI overrides taking priority over settings."""
    daemon_settings = settings.daemon
    return HttpDaemon(
        host=host or daemon_settings.host,
        port=port or daemon_settings.port,
        ssl=daemon_settings.ssl,
        block_count=daemon_settings.block_count,
        timeout=daemon_settings.timeout,
    )
