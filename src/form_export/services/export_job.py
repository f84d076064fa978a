"""Export job runner for a single form."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import date, datetime
from pathlib import Path

from form_export.db.preferences import PreferenceStore, export_date_key
from form_export.exceptions import (
    ExportCancelledError,
    FormExportError,
    FormNotFoundError,
    InvalidDateRangeError,
    InvalidOutputDirectoryError,
    MissingCredentialConfigError,
)
from form_export.models.configuration import ExportConfiguration
from form_export.models.export import EventKind, ExportEvent, ExportOutcome, JobState
from form_export.models.form import FormDefinition
from form_export.services.credential_service import Credential, CredentialResolver
from form_export.services.registry import ExportForms, FormRef
from form_export.utils.validators import DIR_NOT_SPECIFIED

logger = logging.getLogger(__name__)

EventListener = Callable[[ExportEvent], None]


class Converter(ABC):
    """Abstract base class for submission-to-CSV converters."""

    @abstractmethod
    async def convert(
        self,
        form: FormDefinition,
        credential: Credential | None,
        start_date: date | None,
        end_date: date | None,
        output_dir: Path,
    ) -> None:
        """Write a form's submissions within the date range to output_dir.

        Args:
            form: Form to export
            credential: Private key for encrypted forms, None otherwise
            start_date: Inclusive lower bound on submission date
            end_date: Inclusive upper bound on submission date
            output_dir: Directory receiving the CSV output

        Raises:
            ConverterError: If the export cannot be completed
        """
        pass


class ExportJobRunner:
    """Runs one form's export through its stages and records the outcome.

    Stages run strictly in order: encryption check, credential resolution
    (encrypted forms only), date range check, delegation to the converter,
    then recording into the registry. Runtime failures end the job with a
    failed outcome instead of an exception; an unknown form identifier is a
    caller error and propagates as FormNotFoundError.
    """

    def __init__(
        self,
        registry: ExportForms,
        converter: Converter,
        store: PreferenceStore,
        credential_resolver: CredentialResolver | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Initialize job runner.

        Args:
            registry: Form registry receiving outcomes
            converter: Converter doing the actual export
            store: Preference store persisting watermarks
            credential_resolver: PEM resolver (default: CredentialResolver())
            cancel_event: Cooperative cancellation flag checked between stages
        """
        self.registry = registry
        self.converter = converter
        self.store = store
        self.credential_resolver = credential_resolver or CredentialResolver()
        self.cancel_event = cancel_event
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        """Register a listener for progress and failure notifications."""
        self._listeners.append(listener)

    def _publish(self, form_id: str, kind: EventKind, message: str, state: JobState) -> None:
        event = ExportEvent(form_id=form_id, kind=kind, message=message, state=state)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Export listener failed on %s event for form %s", kind.value, form_id)

    def _checkpoint(self, form_id: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ExportCancelledError(form_id)

    async def run(
        self, form: FormRef, configuration: ExportConfiguration | None = None
    ) -> ExportOutcome:
        """Export one form.

        Args:
            form: Form or form identifier
            configuration: Configuration to use (default: the registry's)

        Returns:
            Outcome recorded for the form

        Raises:
            FormNotFoundError: If the form is not in the registry
        """
        definition = self.registry.get_form(form)
        if configuration is None:
            configuration = self.registry.get_configuration(definition)
        form_id = definition.form_id

        state = JobState.IDLE
        try:
            self._checkpoint(form_id)
            state = JobState.ENCRYPTION_CHECK
            credential = None
            if definition.is_encrypted:
                if configuration.pem_file is None:
                    raise MissingCredentialConfigError(form_id)
                self._checkpoint(form_id)
                state = JobState.CREDENTIAL_RESOLUTION
                credential = await self.credential_resolver.resolve(configuration.pem_file)
                self._publish(form_id, EventKind.PROGRESS, "Successfully parsed Pem file", state)

            self._checkpoint(form_id)
            state = JobState.RANGE_CHECK
            invalid_range = configuration.invalid_date_range()
            if invalid_range is not None:
                raise InvalidDateRangeError(*invalid_range)
            if configuration.export_dir is None:
                raise InvalidOutputDirectoryError(None, DIR_NOT_SPECIFIED)

            self._checkpoint(form_id)
            state = JobState.DELEGATED
            logger.info(
                "Exporting form %s (%s) to %s", definition.form_name, form_id, configuration.export_dir
            )
            self._publish(form_id, EventKind.PROGRESS, f"Exporting to {configuration.export_dir}", state)
            await self.converter.convert(
                definition,
                credential,
                configuration.start_date,
                configuration.end_date,
                configuration.export_dir,
            )
        except FormNotFoundError:
            raise
        except FormExportError as e:
            return self._record_failure(definition, state, e, str(e))
        except Exception as e:
            logger.exception("Unexpected error exporting form %s during %s", form_id, state.value)
            return self._record_failure(definition, state, e, f"Export failed: {e}")

        message = f"Exported {definition.form_name} to {configuration.export_dir}"
        exported_at = self.registry.record_outcome(form_id, message, True)
        if exported_at is not None:
            await self._persist_export_date(form_id, exported_at)
        self._publish(form_id, EventKind.SUCCESS, message, JobState.RECORDED)
        return ExportOutcome(
            form_id=form_id, succeeded=True, message=message, exported_at=exported_at
        )

    async def _persist_export_date(self, form_id: str, exported_at: datetime) -> None:
        # Export files are already written; the outcome stays a success.
        try:
            await self.store.put(export_date_key(form_id), exported_at.isoformat())
        except Exception:
            logger.warning("Could not persist export date of form %s", form_id, exc_info=True)

    def _record_failure(
        self, form: FormDefinition, state: JobState, error: Exception, message: str
    ) -> ExportOutcome:
        logger.warning("Export of form %s failed during %s: %s", form.form_id, state.value, message)
        self.registry.record_outcome(form.form_id, message, False)
        self._publish(form.form_id, EventKind.FAILURE, message, state)
        return ExportOutcome(
            form_id=form.form_id,
            succeeded=False,
            message=message,
            failed_stage=state,
            error_type=type(error).__name__,
        )
