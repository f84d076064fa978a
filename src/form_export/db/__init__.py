"""Preference persistence."""

from form_export.db.preferences import (
    InMemoryPreferenceStore,
    PreferenceStore,
    SqlitePreferenceStore,
    configuration_prefix,
    export_date_key,
)

__all__ = [
    "PreferenceStore",
    "InMemoryPreferenceStore",
    "SqlitePreferenceStore",
    "configuration_prefix",
    "export_date_key",
]
