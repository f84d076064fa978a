"""Registry of known forms with their export configurations and watermarks."""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from form_export.db.preferences import PreferenceStore, configuration_prefix, export_date_key
from form_export.exceptions import FormNotFoundError
from form_export.models.configuration import ExportConfiguration
from form_export.models.export import SuccessfulExport
from form_export.models.form import FormDefinition, FormStatus, StatusEntry
from form_export.utils.validators import parse_datetime

logger = logging.getLogger(__name__)

FormRef = FormDefinition | str
SuccessCallback = Callable[[SuccessfulExport], None]


def _form_id(form: FormRef) -> str:
    return form.form_id if isinstance(form, FormDefinition) else form


class ExportForms:
    """Owns the ordered form list and per-form export bookkeeping.

    The form list is the source of truth; the identifier index is derived
    from it and rebuilt whenever the list's membership changes. Every
    mutation happens under a single re-entrant lock so concurrent export
    jobs never observe a torn write.
    """

    def __init__(
        self,
        forms: Iterable[FormDefinition],
        configurations: dict[str, ExportConfiguration] | None = None,
        last_export_dates: dict[str, datetime] | None = None,
        reserved_names: Iterable[str] = (),
        reserved_dirs: Iterable[Path] = (),
    ) -> None:
        """Initialize registry.

        Args:
            forms: Discovered forms, in display order
            configurations: Restored configurations keyed by form identifier
            last_export_dates: Restored watermarks keyed by form identifier
            reserved_names: Reserved device storage directory names
            reserved_dirs: Directories output must never be nested in

        Raises:
            FormNotFoundError: If a configuration or watermark names an unknown form
        """
        self._lock = threading.RLock()
        self._forms: list[FormStatus] = []
        self._index: dict[str, FormStatus] = {}
        self._configurations: dict[str, ExportConfiguration] = {}
        self._last_export_dates: dict[str, datetime] = {}
        self._callbacks: list[SuccessCallback] = []
        self.reserved_names = list(reserved_names)
        self.reserved_dirs = [Path(p) for p in reserved_dirs]

        self.merge(forms)
        for form_id, configuration in (configurations or {}).items():
            self._status(form_id)
            self._configurations[form_id] = configuration
        for form_id, exported_at in (last_export_dates or {}).items():
            self._status(form_id)
            self._last_export_dates[form_id] = exported_at

    @classmethod
    async def load(
        cls,
        forms: Iterable[FormDefinition],
        store: PreferenceStore,
        reserved_names: Iterable[str] = (),
        reserved_dirs: Iterable[Path] = (),
    ) -> "ExportForms":
        """Build a registry, restoring configurations and watermarks from store.

        Raises:
            ConfigParseError: If a persisted date or date-time is malformed
        """
        forms = list(forms)
        configurations: dict[str, ExportConfiguration] = {}
        export_dates: dict[str, datetime] = {}
        for form in forms:
            configuration = await ExportConfiguration.load(store, configuration_prefix(form.form_id))
            if not configuration.is_empty():
                configurations[form.form_id] = configuration
            key = export_date_key(form.form_id)
            raw = await store.get(key)
            if raw is not None:
                export_dates[form.form_id] = parse_datetime(key, raw)

        return cls(
            forms,
            configurations,
            export_dates,
            reserved_names=reserved_names,
            reserved_dirs=reserved_dirs,
        )

    async def save_configuration(self, form: FormRef, store: PreferenceStore) -> None:
        """Persist a form's current configuration to store."""
        form_id = _form_id(form)
        configuration = self.get_configuration(form_id)
        await configuration.save(store, configuration_prefix(form_id))

    # ------------------------------------------------------------------
    # Form list
    # ------------------------------------------------------------------

    def merge(self, forms: Iterable[FormDefinition]) -> list[FormDefinition]:
        """Append forms whose identifier is not already known.

        Existing order is kept; new forms are appended in the order given.

        Returns:
            The forms actually added
        """
        added: list[FormDefinition] = []
        with self._lock:
            known = set(self._index)
            for form in forms:
                if form.form_id in known:
                    continue
                known.add(form.form_id)
                self._forms.append(FormStatus(form=form))
                added.append(form)
            self._rebuild_index()
        if added:
            logger.debug("Merged %d new forms", len(added))
        return added

    def _rebuild_index(self) -> None:
        self._index = {status.form_id: status for status in self._forms}

    def _status(self, form: FormRef) -> FormStatus:
        form_id = _form_id(form)
        status = self._index.get(form_id)
        if status is None:
            raise FormNotFoundError(form_id)
        return status

    def size(self) -> int:
        with self._lock:
            return len(self._forms)

    def __len__(self) -> int:
        return self.size()

    def get(self, index: int) -> FormDefinition:
        with self._lock:
            return self._forms[index].form

    def forms(self) -> list[FormDefinition]:
        with self._lock:
            return [status.form for status in self._forms]

    def get_form(self, form: FormRef) -> FormDefinition:
        """Look up a form by identifier.

        Raises:
            FormNotFoundError: If the identifier is unknown
        """
        with self._lock:
            return self._status(form).form

    def status(self, form: FormRef) -> FormStatus:
        """Snapshot of a form's selection flag and status log."""
        with self._lock:
            return self._status(form).model_copy(deep=True)

    # ------------------------------------------------------------------
    # Configurations
    # ------------------------------------------------------------------

    def has_configuration(self, form: FormRef) -> bool:
        with self._lock:
            return _form_id(form) in self._configurations

    def get_configuration(self, form: FormRef) -> ExportConfiguration:
        """Get a form's configuration, storing an empty one on first access."""
        with self._lock:
            form_id = self._status(form).form_id
            configuration = self._configurations.get(form_id)
            if configuration is None:
                configuration = ExportConfiguration.empty()
                self._configurations[form_id] = configuration
            return configuration

    def set_configuration(self, form: FormRef, configuration: ExportConfiguration) -> None:
        with self._lock:
            form_id = self._status(form).form_id
            self._configurations[form_id] = configuration

    def remove_configuration(self, form: FormRef) -> None:
        with self._lock:
            self._configurations.pop(_form_id(form), None)

    def has_valid_configuration(self, form: FormRef) -> bool:
        with self._lock:
            status = self._status(form)
            configuration = self._configurations.get(status.form_id)
            return configuration is not None and self._is_usable(status.form, configuration)

    def validation_errors(self, form: FormRef) -> list[str]:
        """Reasons a form's current configuration cannot be exported."""
        with self._lock:
            status = self._status(form)
            configuration = self._configurations.get(status.form_id, ExportConfiguration.empty())
        return configuration.validation_errors(
            status.form.is_encrypted, self.reserved_names, self.reserved_dirs
        )

    def valid_configurations(self) -> dict[str, ExportConfiguration]:
        """Non-empty, valid configurations keyed by form identifier, in display order."""
        with self._lock:
            return {
                status.form_id: self._configurations[status.form_id]
                for status in self._forms
                if status.form_id in self._configurations
                and self._is_usable(status.form, self._configurations[status.form_id])
            }

    def _is_usable(self, form: FormDefinition, configuration: ExportConfiguration) -> bool:
        return not configuration.is_empty() and configuration.is_valid(
            form.is_encrypted, self.reserved_names, self.reserved_dirs
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, form: FormRef, selected: bool = True) -> None:
        with self._lock:
            self._status(form).selected = selected

    def select_all(self) -> None:
        with self._lock:
            for status in self._forms:
                status.selected = True

    def clear_all(self) -> None:
        with self._lock:
            for status in self._forms:
                status.selected = False

    def selected_forms(self) -> list[FormDefinition]:
        with self._lock:
            return [status.form for status in self._forms if status.selected]

    def some_selected(self) -> bool:
        return bool(self.selected_forms())

    def all_selected(self) -> bool:
        with self._lock:
            return all(status.selected for status in self._forms)

    def none_selected(self) -> bool:
        with self._lock:
            return not any(status.selected for status in self._forms)

    def all_selected_have_configuration(self) -> bool:
        """Whether every selected form has a non-empty configuration."""
        with self._lock:
            return all(
                form.form_id in self._configurations
                and not self._configurations[form.form_id].is_empty()
                for form in self.selected_forms()
            )

    def all_selected_have_valid_configuration(self) -> bool:
        with self._lock:
            return all(self.has_valid_configuration(form) for form in self.selected_forms())

    # ------------------------------------------------------------------
    # Outcomes and watermarks
    # ------------------------------------------------------------------

    def on_successful_export(self, callback: SuccessCallback) -> None:
        """Subscribe to successful export events."""
        with self._lock:
            self._callbacks.append(callback)

    def record_outcome(self, form: FormRef, message: str, succeeded: bool) -> datetime | None:
        """Append an export outcome to a form's status log.

        On success the form's watermark is stamped with the current time and
        every success subscriber is notified before this method returns.

        Returns:
            The new watermark on success, otherwise None

        Raises:
            FormNotFoundError: If the identifier is unknown
        """
        with self._lock:
            status = self._status(form)
            status.status_log.append(StatusEntry(message=message, succeeded=succeeded))
            if not succeeded:
                return None
            exported_at = datetime.now(timezone.utc)
            self._last_export_dates[status.form_id] = exported_at
            callbacks = list(self._callbacks)

        event = SuccessfulExport(form_id=status.form_id, exported_at=exported_at)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Successful export subscriber failed for form %s", status.form_id)
        return exported_at

    def last_export_time(self, form: FormRef) -> datetime | None:
        with self._lock:
            return self._last_export_dates.get(_form_id(form))

