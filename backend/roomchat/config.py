"""roomchat application configuration.

Loads settings from a single YAML file, ``roomchat.settings.yaml``, into a tree
of pydantic models. The file location can be overridden with the
``ROOMCHAT_SETTINGS`` environment variable. A missing file yields defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("roomchat.settings.yaml")
SETTINGS_ENV_VAR = "ROOMCHAT_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class ChatSettings(BaseModel):
    history_page_size:         int = Field(default=50, ge=1, le=100)
    max_participants_per_room: int = Field(default=0, ge=0)


class StorageSettings(BaseModel):
    db_path: str = "messages.duckdb"


class RetentionSettings(BaseModel):
    """Background purge of old messages."""
    enabled:                bool  = True
    ttl_hours:              float = Field(default=24, gt=0)
    sweep_interval_seconds: float = Field(default=3600, gt=0)


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    chat:      ChatSettings      = Field(default_factory=ChatSettings)
    storage:   StorageSettings   = Field(default_factory=StorageSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_db_path(config: AppConfig, settings_path: Path) -> None:
    """Resolve a relative storage path against the settings file directory."""
    db_path = config.storage.db_path
    if db_path == ":memory:" or Path(db_path).is_absolute():
        return
    config.storage.db_path = str(settings_path.resolve().parent / db_path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings from *settings_path* (or the default location)."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    config = AppConfig(**_load_yaml(settings_path))
    _resolve_db_path(config, settings_path)

    logger.info(
        "Settings loaded (server=%s:%s, db=%s, retention.enabled=%s)",
        config.server.host,
        config.server.port,
        config.storage.db_path,
        config.retention.enabled,
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Install *config* as the process-wide config (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    global _config
    _config = None
