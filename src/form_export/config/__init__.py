"""Process-wide settings for form export.

Settings are read from `FORM_EXPORT_*` environment variables (or `.env`) the
first time they are needed. Tests and embedding applications install their
own instance with `set_settings`.
"""

import logging

from form_export.config.settings import Settings, normalize_log_level

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the active settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Drop the active settings so the next access reads the environment again."""
    global _settings
    _settings = None


def configure_logging(settings: Settings, level: str | None = None) -> None:
    """Configure root logging for the command line.

    Args:
        settings: Settings providing the default level
        level: Level name overriding settings.log_level

    Raises:
        ValueError: If level is not a logging level name
    """
    logging.basicConfig(
        level=normalize_log_level(level) if level else settings.log_level,
        format=LOG_FORMAT,
    )


__all__ = [
    "Settings",
    "configure_logging",
    "get_settings",
    "normalize_log_level",
    "reset_settings",
    "set_settings",
]
