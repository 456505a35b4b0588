"""roomcast application configuration.

Loads settings from two YAML files:
  * roomcast.settings.yaml  — non-secret configuration
  * roomcast.secrets.yaml   — secrets (never committed)

The file locations can be overridden with the ``ROOMCAST_SETTINGS`` and
``ROOMCAST_SECRETS`` environment variables. Relative database paths are
resolved against the directory holding the settings file.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("roomcast.settings.yaml")
SECRETS_FILE  = Path("roomcast.secrets.yaml")

SETTINGS_ENV = "ROOMCAST_SETTINGS"
SECRETS_ENV  = "ROOMCAST_SECRETS"

IN_MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_db_path(raw: str, base_dir: Path) -> str:
    if raw == IN_MEMORY_DB:
        return raw
    path = Path(raw).expanduser()
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 4000
    reload:          bool      = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:4000"])


class LoggingSettings(BaseModel):
    level: str = "info"


class AuthSettings(BaseModel):
    token_expire_minutes: int = 60
    db_path:              str = "users.duckdb"

    @field_validator("token_expire_minutes")
    @classmethod
    def _positive_lifetime(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token_expire_minutes must be positive")
        return value


class RoomSettings(BaseModel):
    default_room:         str   = "general"
    history_window_hours: int   = 24
    send_timeout_seconds: float = 10.0

    @field_validator("default_room")
    @classmethod
    def _non_blank_room(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("default_room must not be blank")
        return value

    @field_validator("send_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("send_timeout_seconds must be positive")
        return value


class ArchiveSettings(BaseModel):
    """Message archive storage and retention."""
    db_path:                str = "messages.duckdb"
    retention_hours:        int = 24
    purge_interval_seconds: int = 600


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    rooms:   RoomSettings    = Field(default_factory=RoomSettings)
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_path = Path(settings_path or os.environ.get(SETTINGS_ENV) or SETTINGS_FILE)
    secrets_path  = Path(secrets_path or os.environ.get(SECRETS_ENV) or SECRETS_FILE)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)

    base_dir = settings_path.resolve().parent
    config.auth.db_path = _resolve_db_path(config.auth.db_path, base_dir)
    config.archive.db_path = _resolve_db_path(config.archive.db_path, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, default_room=%s, archive=%s)",
        config.server.host,
        config.server.port,
        config.rooms.default_room,
        config.archive.db_path,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Replace the process-wide config (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached config so the next get_config() reloads it."""
    global _config
    _config = None
