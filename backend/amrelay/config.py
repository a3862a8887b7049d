"""amrelay application configuration.

Settings come from a single optional YAML file:
  * amrelay.settings.yaml in the working directory, or
  * the file named by the AMRELAY_SETTINGS environment variable.

Every section is a frozen pydantic model. The loaded RelayConfig is built
once at startup and handed to build_services(); nothing else reads it
from module state.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("amrelay.settings.yaml")
SETTINGS_ENV_VAR = "AMRELAY_SETTINGS"

MIB = 1024 * 1024

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s (using defaults)", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return data


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(_Section):
    host: str = "0.0.0.0"
    port: int = 8080


class LoggingSettings(_Section):
    level: str = "info"


class StorageSettings(_Section):
    """Where artifacts and per-request scratch files live."""
    downloads_dir:           Path = Path("downloads")
    scratch_dir:             Path = Path("temp")
    max_display_name_length: int  = 50
    default_basename:        str  = "arcpi"

    @field_validator("max_display_name_length")
    @classmethod
    def check_name_length(cls, v: int) -> int:
        if v < 8:
            raise ValueError("max_display_name_length must be at least 8")
        return v

    @field_validator("default_basename")
    @classmethod
    def check_default_basename(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("default_basename must not be empty")
        return v.strip()


class IngestSettings(_Section):
    max_upload_bytes:      int   = 50 * MIB
    max_download_bytes:    int   = 200 * MIB
    chunk_size:            int   = 64 * 1024
    user_agent:            str   = DESKTOP_USER_AGENT
    fetch_timeout_seconds: float = 60.0


class TranscoderSettings(_Section):
    """Fixed output profile: AMR-NB, mono, 8 kHz."""
    ffmpeg_path: Optional[str] = None
    channels:    int = 1
    sample_rate: int = 8000
    codec:       str = "libopencore_amrnb"
    extension:   str = ".amr"

    @field_validator("extension")
    @classmethod
    def ensure_leading_dot(cls, v: str) -> str:
        return v if v.startswith(".") else f".{v}"


class MetadataSettings(_Section):
    """NetEase Cloud Music link detection and title/artist lookup."""
    enabled:             bool  = True
    domain:              str   = "music.163.com"
    api_base:            str   = "https://v.iarc.top/"
    user_agent:          str   = "Mozilla/5.0"
    timeout_seconds:     float = 10.0
    companion_extension: str   = ".mp3"

    @field_validator("companion_extension")
    @classmethod
    def ensure_leading_dot(cls, v: str) -> str:
        return v if v.startswith(".") else f".{v}"


class RetentionSettings(_Section):
    interval_seconds: float = 600.0
    max_age_seconds:  float = 3600.0


class RelayConfig(_Section):
    server:     ServerSettings     = Field(default_factory=ServerSettings)
    logging:    LoggingSettings    = Field(default_factory=LoggingSettings)
    storage:    StorageSettings    = Field(default_factory=StorageSettings)
    ingest:     IngestSettings     = Field(default_factory=IngestSettings)
    transcoder: TranscoderSettings = Field(default_factory=TranscoderSettings)
    metadata:   MetadataSettings   = Field(default_factory=MetadataSettings)
    retention:  RetentionSettings  = Field(default_factory=RetentionSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def resolve_settings_path(settings_path: Optional[Union[str, Path]] = None) -> Path:
    """Return the settings file to read: explicit argument, env var, or default."""
    if settings_path is not None:
        return Path(settings_path)
    env_path = os.environ.get(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path)
    return SETTINGS_FILE


def load_config(settings_path: Optional[Union[str, Path]] = None) -> RelayConfig:
    """Load *RelayConfig* from YAML, falling back to defaults for anything missing."""
    path = resolve_settings_path(settings_path)
    config = RelayConfig(**_load_yaml(path))
    logger.info(
        "Settings loaded (server=%s:%s, downloads=%s, scratch=%s, retention=%ss)",
        config.server.host,
        config.server.port,
        config.storage.downloads_dir,
        config.storage.scratch_dir,
        int(config.retention.max_age_seconds),
    )
    return config
