"""Central configuration for the facebridge controller service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class SurfaceSettings(BaseModel):
    """Content surface channel tuning."""
    command_timeout_s: float = Field(10.0, description="Max wait for a single evaluated command result (seconds)")
    ui_event_queue_size: int = Field(8, description="Max buffered UI events per subscriber")


class Settings(BaseSettings):
    """Environment-driven settings for the bridge."""

    # Callback protocol
    callback_scheme: str = Field("callback", description="URL scheme sentinel used by surface callbacks")
    reference_label: str = Field("Reference", description="Label the reference identity is registered under")
    detect_only_name: str = Field("DetectedFace", description="Display name reported for detect-only results")

    # Content surface
    content_entry: str = Field("wwwroot/index.html", description="Entry page the content surface loads")

    # Durable preferences
    store_path: Path = Field(ROOT_DIR / "data" / "preferences.json", description="JSON file backing session flags")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    surface: SurfaceSettings = Field(default_factory=SurfaceSettings, description="Content surface settings")

    @field_validator("callback_scheme", mode="before")
    @classmethod
    def _normalise_scheme(cls, value: object) -> object:
        if isinstance(value, str):
            parsed = value.strip().lower()
            if parsed.endswith("://"):
                parsed = parsed[:-3]
            if not parsed:
                raise ValueError("CALLBACK_SCHEME must not be empty")
            return parsed
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
