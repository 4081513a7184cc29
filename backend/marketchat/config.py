"""Marketchat application configuration.

Loads settings from two YAML files:
  * marketchat.settings.yaml: non-secret configuration
  * marketchat.secrets.yaml: secrets (never committed)

Both paths can be overridden with the MARKETCHAT_SETTINGS and
MARKETCHAT_SECRETS environment variables.
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

SETTINGS_FILE = Path("marketchat.settings.yaml")
SECRETS_FILE  = Path("marketchat.secrets.yaml")

_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str           = "change-me-in-production"
    algorithm:  str           = "HS256"
    issuer:     Optional[str] = None
    audience:   Optional[str] = None
    leeway_seconds: int       = Field(default=0, ge=0)


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class DatabaseSettings(BaseModel):
    """Location of the DuckDB file backing conversations and messages."""
    path: str = "marketchat.duckdb"


class MessagingSettings(BaseModel):
    """Limits applied by the message pipeline."""
    # 0 = no limit
    max_content_length: int = Field(default=5000, ge=0)
    search_result_limit: int = Field(default=10, ge=1)


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.lower() not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    database:  DatabaseSettings  = Field(default_factory=DatabaseSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = settings_path or Path(os.environ.get("MARKETCHAT_SETTINGS", SETTINGS_FILE))
    secrets_path  = secrets_path or Path(os.environ.get("MARKETCHAT_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, max_content_length=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.messaging.max_content_length,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Drop the cached settings so the next get_config() reloads from disk."""
    global _config
    _config = None
