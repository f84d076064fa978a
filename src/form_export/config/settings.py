"""Application settings management using Pydantic Settings."""

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_log_level(value: str) -> str:
    """Upper-case a logging level name, rejecting names logging does not know."""
    level = value.upper()
    if level not in logging.getLevelNamesMapping():
        raise ValueError(f"Unknown log level: {value}")
    return level


def _get_default_preferences_path() -> str:
    """Get default preferences database path in the working directory."""
    return str(Path.cwd() / "data" / "preferences.db")


class Settings(BaseSettings):
    """Application configuration settings.

    All settings can be configured via environment variables with the
    prefix `FORM_EXPORT_`. For example, `FORM_EXPORT_STORAGE_DIR`.
    """

    # Storage
    storage_dir: str = Field(
        default="Form Export Storage",
        description="Local archive holding pulled forms and submissions",
    )
    preferences_path: str = Field(
        default_factory=_get_default_preferences_path,
        description="SQLite file backing the preference store",
    )

    # Batch export
    max_parallel_exports: int = Field(
        default=2,
        ge=1,
        le=8,  # each job is I/O and CPU bound on decryption
        description="Maximum number of forms exported concurrently",
    )
    pull_before_default: bool = Field(
        default=False,
        description="Pull before export when a configuration inherits the setting",
    )

    # Output location safety
    reserved_directory_names: list[str] = Field(
        default_factory=lambda: ["odk"],
        description="Path components marking reserved device storage",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_prefix="FORM_EXPORT_", env_file=".env", env_file_encoding="utf-8"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate log level against the logging module's level names."""
        return normalize_log_level(value)
