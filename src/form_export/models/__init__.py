"""Data models for form export."""

from form_export.models.configuration import ExportConfiguration
from form_export.models.export import (
    BatchResult,
    EventKind,
    ExportEvent,
    ExportOutcome,
    JobState,
    SuccessfulExport,
)
from form_export.models.form import FormDefinition, FormStatus, StatusEntry

__all__ = [
    # Form models
    "FormDefinition",
    "FormStatus",
    "StatusEntry",
    # Configuration
    "ExportConfiguration",
    # Export job models
    "JobState",
    "EventKind",
    "ExportEvent",
    "ExportOutcome",
    "BatchResult",
    "SuccessfulExport",
]
