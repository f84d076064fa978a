"""Validation utilities for export locations and persisted values.

Output directories are checked before any export job starts so an unsafe
location (inside the archive itself, or inside a device's reserved storage
folder) never receives CSV files.
"""

from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path

from form_export.exceptions import ConfigParseError, InvalidOutputDirectoryError

DIR_NOT_SPECIFIED = "Export directory was not specified."
DIR_NOT_EXIST = "Export directory does not exist."
DIR_NOT_DIRECTORY = "Export path is not a directory."
DIR_INSIDE_DEVICE_DIRECTORY = "Export directory is inside a reserved device storage directory."
DIR_INSIDE_STORAGE = "Export directory is inside the form storage directory."


def is_under_reserved_name(path: Path, reserved_names: Iterable[str]) -> bool:
    """Check whether any component of path matches a reserved directory name.

    Args:
        path: Path to check
        reserved_names: Directory names (case-insensitive) marking reserved storage

    Returns:
        True if the path is, or is nested inside, a reserved directory
    """
    names = {name.lower() for name in reserved_names}
    return any(part.lower() in names for part in path.resolve().parts)


def is_under_directory(path: Path, root: Path) -> bool:
    """Check whether path is root or nested inside root.

    Both paths are resolved first so symlinks cannot hide the nesting.
    """
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def output_directory_error(
    path: Path | None,
    reserved_names: Iterable[str] = (),
    reserved_dirs: Iterable[Path] = (),
) -> str | None:
    """Describe why path cannot be used as an export directory.

    Args:
        path: Candidate output directory
        reserved_names: Reserved directory names (device storage folders)
        reserved_dirs: Reserved directory roots (the form storage directory)

    Returns:
        Human-readable reason, or None if the directory is usable
    """
    if path is None or not str(path).strip():
        return DIR_NOT_SPECIFIED
    if not path.exists():
        return DIR_NOT_EXIST
    if not path.is_dir():
        return DIR_NOT_DIRECTORY
    if is_under_reserved_name(path, reserved_names):
        return DIR_INSIDE_DEVICE_DIRECTORY
    if any(is_under_directory(path, root) for root in reserved_dirs):
        return DIR_INSIDE_STORAGE
    return None


def validate_output_directory(
    path: Path | None,
    reserved_names: Iterable[str] = (),
    reserved_dirs: Iterable[Path] = (),
) -> Path:
    """Validate and return an export directory.

    Raises:
        InvalidOutputDirectoryError: If the directory is unusable
    """
    reason = output_directory_error(path, reserved_names, reserved_dirs)
    if reason is not None or path is None:
        raise InvalidOutputDirectoryError(path, reason or DIR_NOT_SPECIFIED)
    return path


def parse_date(key: str, value: str) -> date:
    """Parse a persisted ISO-8601 date.

    Raises:
        ConfigParseError: If the value is not an ISO date
    """
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ConfigParseError(key, value) from e


def parse_datetime(key: str, value: str) -> datetime:
    """Parse a persisted ISO-8601 date-time.

    Raises:
        ConfigParseError: If the value is not an ISO date-time
    """
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise ConfigParseError(key, value) from e


def parse_bool(key: str, value: str) -> bool:
    """Parse a persisted boolean flag ("true"/"false").

    Raises:
        ConfigParseError: If the value is neither
    """
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ConfigParseError(key, value)
