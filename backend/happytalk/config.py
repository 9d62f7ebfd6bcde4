"""HappyTalk application configuration.

Loads settings from two YAML files:
  * happytalk.settings.yaml  - non-secret configuration
  * happytalk.secrets.yaml   - secrets (never committed)

Both files are optional. Missing files fall back to the model defaults so
the backend and the sync client can start with no configuration at all.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("happytalk.settings.yaml")
SECRETS_FILE  = Path("happytalk.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class BroadcastSecrets(BaseModel):
    # Endpoint=https://<name>.service.signalr.net;AccessKey=<key>;Version=1.0;
    connection_string: Optional[str] = None


class AdminSecrets(BaseModel):
    """Bearer tokens allowed to edit or delete any message."""
    tokens: List[str] = Field(default_factory=list)


class Secrets(BaseModel):
    broadcast: BroadcastSecrets = Field(default_factory=BroadcastSecrets)
    admin:     AdminSecrets     = Field(default_factory=AdminSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class StoreSettings(BaseModel):
    """Message persistence (DuckDB file standing in for the document store)."""
    db_path:             str           = "happytalk_messages.duckdb"
    default_page_size:   int           = Field(default=50, ge=1)
    max_page_size:       int           = Field(default=100, ge=1)
    default_ttl_seconds: Optional[int] = Field(default=None, ge=1)


class BroadcastSettings(BaseModel):
    hub_name:                str   = "chat"
    token_ttl_minutes:       int   = Field(default=60, ge=1)
    request_timeout_seconds: float = Field(default=10.0, gt=0)


class SyncSettings(BaseModel):
    """Client-side synchronization engine defaults."""
    api_base_url:           str                     = "http://localhost:3000"
    transport:              Literal["push", "poll"] = "poll"
    poll_interval_seconds:  float                   = Field(default=2.0, gt=0)
    poll_limit:             int                     = Field(default=50, ge=1)
    # None means a failing poll loop never escalates past logging.
    poll_failure_threshold: Optional[int]           = Field(default=None, ge=1)
    history_limit:          int                     = Field(default=50, ge=1)

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    store:     StoreSettings     = Field(default_factory=StoreSettings)
    broadcast: BroadcastSettings = Field(default_factory=BroadcastSettings)
    sync:      SyncSettings      = Field(default_factory=SyncSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Path = SETTINGS_FILE,
    secrets_file: Path = SECRETS_FILE,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, store=%s, sync.transport=%s, broadcast=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.store.db_path,
        app_settings.sync.transport,
        "configured" if app_settings.secrets.broadcast.connection_string else "disabled",
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: AppSettings) -> None:
    global _config
    _config = settings


def reset_config() -> None:
    global _config
    _config = None
