"""Per-form export configuration."""

from collections.abc import Iterable
from datetime import date
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, ConfigDict

from form_export.db.preferences import PreferenceStore
from form_export.utils.validators import output_directory_error, parse_bool, parse_date

EXPORT_DIR = "export_dir"
PEM_FILE = "pem_file"
START_DATE = "start_date"
END_DATE = "end_date"
PULL_BEFORE = "pull_before"
PULL_BEFORE_INHERIT = "pull_before_inherit"

INVALID_DATE_RANGE = "Invalid date range: start date must be before or equal to end date."
MISSING_PEM_FILE = "Missing pem file configuration for encrypted form."


class ExportConfiguration(BaseModel):
    """Export settings for one form.

    Instances are immutable; edits produce a new configuration that replaces
    the previous one wholesale.
    """

    model_config = ConfigDict(frozen=True)

    export_dir: Path | None = None
    pem_file: Path | None = None
    start_date: date | None = None
    end_date: date | None = None
    pull_before: bool = False
    pull_before_inherit: bool = False

    @classmethod
    def empty(cls) -> Self:
        return cls()

    def is_empty(self) -> bool:
        """True iff no optional field is set and both flags are false."""
        return (
            self.export_dir is None
            and self.pem_file is None
            and self.start_date is None
            and self.end_date is None
            and not self.pull_before
            and not self.pull_before_inherit
        )

    def invalid_date_range(self) -> tuple[date, date] | None:
        """The (start, end) pair when start is after end, otherwise None."""
        if self.start_date is None or self.end_date is None:
            return None
        if self.start_date > self.end_date:
            return self.start_date, self.end_date
        return None

    def has_invalid_date_range(self) -> bool:
        return self.invalid_date_range() is not None

    def validation_errors(
        self,
        form_encrypted: bool = False,
        reserved_names: Iterable[str] = (),
        reserved_dirs: Iterable[Path] = (),
    ) -> list[str]:
        """List the reasons this configuration cannot be used for an export.

        Args:
            form_encrypted: Whether the target form needs a private key
            reserved_names: Reserved device storage directory names
            reserved_dirs: Reserved directory roots (the form storage directory)

        Returns:
            Human-readable problems; empty when the configuration is valid
        """
        errors = []
        dir_error = output_directory_error(self.export_dir, reserved_names, reserved_dirs)
        if dir_error is not None:
            errors.append(dir_error)
        if self.has_invalid_date_range():
            errors.append(INVALID_DATE_RANGE)
        if form_encrypted and self.pem_file is None:
            errors.append(MISSING_PEM_FILE)
        return errors

    def is_valid(
        self,
        form_encrypted: bool = False,
        reserved_names: Iterable[str] = (),
        reserved_dirs: Iterable[Path] = (),
    ) -> bool:
        return not self.validation_errors(form_encrypted, reserved_names, reserved_dirs)

    def resolve_pull_before(self, default: bool) -> bool:
        """Effective "pull before export" flag given the inherited default."""
        return default if self.pull_before_inherit else self.pull_before

    def with_changes(self, **changes: Any) -> Self:
        """Return a new configuration with the given fields replaced."""
        return self.model_copy(update=changes)

    @classmethod
    async def load(cls, store: PreferenceStore, key_prefix: str) -> Self:
        """Rebuild a configuration from individually prefixed preference keys.

        Absent keys leave the corresponding field unset.

        Args:
            store: Preference store to read from
            key_prefix: Namespace prefix, e.g. "custom_<form id>_"

        Returns:
            Restored configuration

        Raises:
            ConfigParseError: If a persisted date or flag is malformed
        """
        values: dict[str, Any] = {}

        export_dir = await store.get(key_prefix + EXPORT_DIR)
        if export_dir is not None:
            values[EXPORT_DIR] = Path(export_dir)

        pem_file = await store.get(key_prefix + PEM_FILE)
        if pem_file is not None:
            values[PEM_FILE] = Path(pem_file)

        for field in (START_DATE, END_DATE):
            raw = await store.get(key_prefix + field)
            if raw is not None:
                values[field] = parse_date(key_prefix + field, raw)

        for field in (PULL_BEFORE, PULL_BEFORE_INHERIT):
            raw = await store.get(key_prefix + field)
            if raw is not None:
                values[field] = parse_bool(key_prefix + field, raw)

        return cls(**values)

    async def save(self, store: PreferenceStore, key_prefix: str) -> None:
        """Persist every field under key_prefix, removing keys of unset fields."""
        serialized: dict[str, str | None] = {
            EXPORT_DIR: str(self.export_dir) if self.export_dir is not None else None,
            PEM_FILE: str(self.pem_file) if self.pem_file is not None else None,
            START_DATE: self.start_date.isoformat() if self.start_date else None,
            END_DATE: self.end_date.isoformat() if self.end_date else None,
            PULL_BEFORE: "true" if self.pull_before else "false",
            PULL_BEFORE_INHERIT: "true" if self.pull_before_inherit else "false",
        }
        for field, value in serialized.items():
            if value is None:
                await store.remove(key_prefix + field)
            else:
                await store.put(key_prefix + field, value)
