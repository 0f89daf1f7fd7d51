"""
Unified settings management for cnsync.

Uses pydantic-settings with the following sources, highest priority first:
1. Keyword arguments (CLI options are passed this way)
2. Environment variables
3. TOML config file ($CNSYNC_DATA_DIR/config.toml or ~/.cnsync/config.toml)
4. Default values

Environment Variable Naming:
    - Prefix CNSYNC_, double underscore for nested settings
    - Examples: CNSYNC_DAEMON__HOST, CNSYNC_SYNC__WINDOW_SIZE
    - Maps to TOML sections: CNSYNC_DAEMON__HOST -> [daemon] host

Usage:
    from cnsync.settings import get_settings

    settings = get_settings()
    print(settings.daemon.host)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from cnsync.constants import (
    BLOCK_HASH_CHECKPOINTS_INTERVAL,
    BLOCKS_PER_DAEMON_REQUEST,
    LAST_KNOWN_BLOCK_HASHES_SIZE,
)
from cnsync.paths import DATA_DIR_ENV, get_default_data_dir


class DaemonSettings(BaseModel):
    """Remote daemon connection."""

    host: str = Field(default="127.0.0.1", description="Daemon host")
    port: int = Field(default=11898, ge=1, le=65535, description="Daemon REST port")
    ssl: bool = Field(default=False, description="Connect over HTTPS")
    timeout: float = Field(default=30.0, gt=0.0, description="Request timeout in seconds")
    block_count: int = Field(
        default=BLOCKS_PER_DAEMON_REQUEST,
        ge=1,
        le=1000,
        description="Blocks requested per sync call",
    )


class SyncConfig(BaseModel):
    """Synchronization behaviour."""

    window_size: int = Field(
        default=LAST_KNOWN_BLOCK_HASHES_SIZE,
        ge=1,
        description="Recent block hashes kept for fork detection (deepest recoverable fork)",
    )
    checkpoint_interval: int = Field(
        default=BLOCK_HASH_CHECKPOINTS_INTERVAL,
        ge=1,
        description="Keep a sparse checkpoint every this many blocks",
    )
    sync_interval: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds between sync ticks",
    )
    scan_coinbase_transactions: bool = Field(
        default=True,
        description="Scan coinbase transactions for mined outputs",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Log level: TRACE, DEBUG, INFO, WARNING, ERROR",
    )


class SyncSettings(BaseSettings):
    """
    Main cnsync settings class.
    """

    model_config = SettingsConfigDict(
        env_prefix="CNSYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: Path | None = Field(
        default=None,
        description="Data directory (defaults to ~/.cnsync)",
    )

    daemon: DaemonSettings = Field(default_factory=DaemonSettings)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    def get_data_dir(self) -> Path:
        """Get the data directory, using default if not set."""
        if self.data_dir is not None:
            return self.data_dir
        return get_default_data_dir()


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """
    Settings source that reads from a TOML config file.

    The file is $CNSYNC_CONFIG_FILE if set, else config.toml in the data dir.
    """

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._config: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        config_path = get_config_path()

        if not config_path.exists():
            logger.debug(f"Config file not found at {config_path}, using defaults")
            return

        import tomllib

        try:
            with open(config_path, "rb") as f:
                self._config = tomllib.load(f)
            logger.info(f"Loaded config from {config_path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Invalid TOML syntax in config file {config_path}: {e}")
            logger.error("Please fix the syntax errors in your config file and try again.")
            sys.exit(1)

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        value = self._config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return self._config


def get_config_path() -> Path:
    """Get the path to the config file."""
    env_path = os.environ.get("CNSYNC_CONFIG_FILE")
    if env_path:
        return Path(env_path)

    data_dir_env = os.environ.get(DATA_DIR_ENV)
    data_dir = Path(data_dir_env) if data_dir_env else Path.home() / ".cnsync"
    return data_dir / "config.toml"


def generate_config_template() -> str:
    """Generate a config file template with every setting commented out."""
    lines = [
        "# cnsync configuration",
        "#",
        "# Settings are commented out by default - uncomment to override.",
        "# Environment variables take priority, e.g. CNSYNC_DAEMON__HOST=node.example",
        "",
    ]

    sections: list[tuple[str, type[BaseModel]]] = [
        ("daemon", DaemonSettings),
        ("sync", SyncConfig),
        ("logging", LoggingSettings),
    ]
    for section, model_cls in sections:
        lines.append(f"[{section}]")
        for field_name, field_info in model_cls.model_fields.items():
            if field_info.description:
                lines.append(f"# {field_info.description}")
            default = field_info.default
            if isinstance(default, bool):
                value_str = str(default).lower()
            elif isinstance(default, str):
                value_str = f'"{default}"'
            else:
                value_str = str(default)
            lines.append(f"# {field_name} = {value_str}")
        lines.append("")

    return "\n".join(lines)


def ensure_config_file(data_dir: Path | None = None) -> Path:
    """
    Ensure the config file exists, creating a template if it doesn't.

    Returns:
        Path to the config file.
    """
    if data_dir is None:
        data_dir = get_default_data_dir()

    config_path = data_dir / "config.toml"
    if not config_path.exists():
        logger.info(f"Creating config file template at {config_path}")
        data_dir.mkdir(parents=True, exist_ok=True)
        config_path.write_text(generate_config_template())

    return config_path


# Global settings instance (lazy-loaded)
_settings: SyncSettings | None = None


def get_settings(**overrides: Any) -> SyncSettings:
    """
    Get the cnsync settings instance.

    On first call, loads settings from all sources. Subsequent calls
    return the cached instance unless reset_settings() is called.
    """
    global _settings
    if _settings is None or overrides:
        _settings = SyncSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None


__all__ = [
    "SyncSettings",
    "DaemonSettings",
    "SyncConfig",
    "LoggingSettings",
    "get_settings",
    "reset_settings",
    "get_config_path",
    "generate_config_template",
    "ensure_config_file",
]
