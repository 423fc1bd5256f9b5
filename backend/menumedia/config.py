"""Menu media service configuration.

Loads settings from a single YAML file:
  * menumedia.settings.yaml  — server, logging and media pipeline settings

Relative paths under ``media`` resolve against the directory holding the
settings file, so a deployment can ship its config next to its uploads.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from menumedia.media.schemas import DEFAULT_PRESETS, DerivativeSpec, SizePreset

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("menumedia.settings.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve(base_dir: Path, value: str) -> str:
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str((base_dir / path).resolve())


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 5000


class LoggingSettings(BaseModel):
    level: str = "info"


class RetentionSettings(BaseModel):
    """Periodic retention sweep over every group directory."""
    enabled:          bool = False
    max_age_days:     int  = Field(30, ge=0)
    interval_seconds: int  = Field(6 * 3600, gt=0)


class MediaSettings(BaseModel):
    media_root:            str               = "./uploads/website"
    temp_dir:              str               = "./uploads/temp"
    max_upload_bytes:      int               = Field(10 * 1024 * 1024, gt=0)
    default_group_key:     str               = "general"
    presets:               List[SizePreset]  = Field(default_factory=lambda: list(DEFAULT_PRESETS))
    raster_quality:        int               = Field(85, ge=1, le=100)
    webp_quality:          int               = Field(80, ge=1, le=100)
    webp_width:            int               = Field(800, gt=0)
    webp_height:           int               = Field(600, gt=0)
    cache_max_age_seconds: int               = Field(31536000, ge=0)
    retention:             RetentionSettings = Field(default_factory=RetentionSettings)

    @field_validator("default_group_key")
    @classmethod
    def _default_key_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("default_group_key must not be empty")
        return value

    def derivative_spec(self) -> DerivativeSpec:
        """Build the immutable preset set handed to the generator."""
        return DerivativeSpec(
            presets=tuple(self.presets),
            webp=SizePreset(label="webp", width=self.webp_width, height=self.webp_height),
            raster_quality=self.raster_quality,
            webp_quality=self.webp_quality,
        )


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    media:   MediaSettings   = Field(default_factory=MediaSettings)

    @model_validator(mode="after")
    def _check_presets(self) -> "AppConfig":
        # Surfaces duplicate labels at load time instead of first upload.
        self.media.derivative_spec()
        return self


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object."""
    path = Path(settings_path) if settings_path else SETTINGS_FILE
    data = _load_yaml(path)

    config = AppConfig(**data)
    base_dir = path.resolve().parent
    config.media.media_root = _resolve(base_dir, config.media.media_root)
    config.media.temp_dir = _resolve(base_dir, config.media.temp_dir)

    logger.info(
        "Settings loaded (media_root=%s, presets=%s, retention.enabled=%s)",
        config.media.media_root,
        ",".join(p.label for p in config.media.presets),
        config.media.retention.enabled,
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace the process-wide configuration (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    """Drop the cached configuration so the next ``get_config`` reloads it."""
    set_config(None)
