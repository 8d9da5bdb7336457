"""
chunkscribe.config - YAML settings loading, validation, engine configuration.

Handles the persisted user settings (model, chunk duration, engine choice),
the immutable embedded-engine configuration derived from them, and the
location of the application home directory.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chunkscribe.exceptions import ConfigError
from chunkscribe.io import read_text, write_text

HOME_ENV_VAR = "CHUNKSCRIBE_HOME"
SETTINGS_FILENAME = "settings.yaml"

DEFAULT_MODEL_ID = "base.en"
DEFAULT_FILLER_TOKENS = ["you"]

MIN_CHUNK_DURATION_MS = 5000
MAX_CHUNK_DURATION_MS = 30000

ENGINE_CHOICES = {"auto", "cpp", "faster"}


class TranscriberSettings(BaseModel):
    """User settings persisted between sessions."""

    model_id: str = DEFAULT_MODEL_ID
    chunk_duration_ms: int = Field(
        default=10000, ge=MIN_CHUNK_DURATION_MS, le=MAX_CHUNK_DURATION_MS
    )
    engine: str = "auto"
    max_in_flight: int = Field(default=2, ge=1)
    filler_tokens: list[str] = Field(default_factory=lambda: list(DEFAULT_FILLER_TOKENS))
    language: str | None = None

    @field_validator("engine")
    @classmethod
    def validate_engine(cls, v: str) -> str:
        if v not in ENGINE_CHOICES:
            raise ValueError(f"engine must be one of: {ENGINE_CHOICES}")
        return v

    @field_validator("model_id")
    @classmethod
    def validate_model_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("model_id must not be empty")
        return v.strip()

    @property
    def chunk_duration_seconds(self) -> float:
        return self.chunk_duration_ms / 1000


class EngineConfig(BaseModel):
    """Immutable configuration for the in-process engine."""

    model_config = ConfigDict(frozen=True)

    model_id: str = DEFAULT_MODEL_ID
    device: str = "auto"
    compute_type: str = "auto"
    cache_dir: Path | None = None
    local_files_only: bool = False
    language: str | None = None
    beam_size: int = Field(default=5, ge=1)

    @classmethod
    def from_settings(cls, settings: TranscriberSettings, cache_dir: Path | None = None) -> EngineConfig:
        return cls(model_id=settings.model_id, language=settings.language, cache_dir=cache_dir)


def default_home() -> Path:
    """Return the application home directory ($CHUNKSCRIBE_HOME or ~/.chunkscribe)."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".chunkscribe"


class SettingsStore:
    """Loads and saves TranscriberSettings as YAML."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def in_home(cls, home: Path) -> SettingsStore:
        return cls(home / SETTINGS_FILENAME)

    def get(self) -> TranscriberSettings:
        """Load settings, falling back to defaults when no file exists.

        Raises:
            ConfigError: If the file is not valid YAML or holds invalid values
        """
        if not self.path.exists():
            return TranscriberSettings()

        try:
            raw = yaml.safe_load(read_text(self.path)) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(f"Expected a mapping in {self.path}")

        try:
            return TranscriberSettings(**raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {self.path}: {e}") from e

    def set(self, settings: TranscriberSettings) -> None:
        """Persist settings atomically."""
        write_text(self.path, dump_settings(settings))

    def update(self, **changes: Any) -> TranscriberSettings:
        """Apply field changes on top of the stored settings and save them."""
        current = self.get().model_dump()
        current.update({k: v for k, v in changes.items() if v is not None})
        try:
            settings = TranscriberSettings(**current)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e
        self.set(settings)
        return settings


def dump_settings(settings: TranscriberSettings) -> str:
    """Render settings as YAML text."""
    return yaml.dump(settings.model_dump(), default_flow_style=False, sort_keys=False)
