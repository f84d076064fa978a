"""Custom exceptions for form export."""

from datetime import date
from enum import Enum
from pathlib import Path


class FormExportError(Exception):
    """Base class for export errors.

    The string form of every subclass is a human-readable message suitable
    for a form's status log.
    """

    pass


class FormNotFoundError(FormExportError):
    """Raised when a form identifier is not known to the registry."""

    def __init__(self, form_id: str) -> None:
        self.form_id = form_id
        super().__init__(f"Form {form_id} not found")


class MissingCredentialConfigError(FormExportError):
    """Raised when an encrypted form has no PEM file configured."""

    def __init__(self, form_id: str) -> None:
        self.form_id = form_id
        super().__init__("Missing pem file configuration")


class CredentialErrorReason(str, Enum):
    """Reason a PEM file could not be turned into a private key."""

    FILE_MISSING = "file_missing"
    PARSE_FAILED = "parse_failed"
    NO_PRIVATE_KEY = "no_private_key"


_CREDENTIAL_MESSAGES = {
    CredentialErrorReason.FILE_MISSING: "Pem file doesn't exist",
    CredentialErrorReason.PARSE_FAILED: "Can't parse Pem file",
    CredentialErrorReason.NO_PRIVATE_KEY: "No private key found on Pem file",
}


class CredentialError(FormExportError):
    """Raised when credential resolution fails."""

    def __init__(self, reason: CredentialErrorReason, path: Path | str) -> None:
        self.reason = reason
        self.path = Path(path)
        super().__init__(_CREDENTIAL_MESSAGES[reason])


class InvalidDateRangeError(FormExportError):
    """Raised when an export start date is after its end date."""

    def __init__(self, start: date, end: date) -> None:
        self.start = start
        self.end = end
        super().__init__(
            f"Invalid date range: start date {start.isoformat()} "
            f"is after end date {end.isoformat()}"
        )


class InvalidOutputDirectoryError(FormExportError):
    """Raised when an output directory cannot receive exported files."""

    def __init__(self, path: Path | str | None, reason: str) -> None:
        self.path = Path(path) if path is not None else None
        self.reason = reason
        super().__init__(reason)


class ConverterError(FormExportError):
    """Raised by a converter when the submissions cannot be written out."""

    pass


class ConfigParseError(FormExportError):
    """Raised when a persisted preference value cannot be parsed."""

    def __init__(self, key: str, value: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Malformed value for preference {key}: {value!r}")


class ExportCancelledError(FormExportError):
    """Raised when an export job observes a cancellation request."""

    def __init__(self, form_id: str) -> None:
        self.form_id = form_id
        super().__init__("Export cancelled")
