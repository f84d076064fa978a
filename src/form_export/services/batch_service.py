"""Batch export across the selected forms."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from form_export.exceptions import FormNotFoundError
from form_export.models.configuration import ExportConfiguration
from form_export.models.export import BatchResult, ExportOutcome
from form_export.models.form import FormDefinition
from form_export.services.export_job import ExportJobRunner
from form_export.services.registry import ExportForms

logger = logging.getLogger(__name__)

MAX_PARALLEL_EXPORTS = 8

BeforeExportHook = Callable[[FormDefinition], Awaitable[None]]


class BatchExportService:
    """Runs export jobs for many forms, isolating each form's failure."""

    def __init__(
        self,
        registry: ExportForms,
        runner: ExportJobRunner,
        max_parallel: int = 1,
        pull_before_default: bool = False,
        before_export: BeforeExportHook | None = None,
    ) -> None:
        """Initialize batch service.

        Args:
            registry: Form registry providing selection and configurations
            runner: Job runner used for every form
            max_parallel: Worker pool size (1 runs forms sequentially)
            pull_before_default: Pull-before flag for inheriting configurations
            before_export: Hook run before a form's export when it pulls first

        Raises:
            ValueError: If max_parallel is out of range
        """
        if not 1 <= max_parallel <= MAX_PARALLEL_EXPORTS:
            raise ValueError(
                f"max_parallel must be between 1 and {MAX_PARALLEL_EXPORTS}, got {max_parallel}"
            )
        self.registry = registry
        self.runner = runner
        self.max_parallel = max_parallel
        self.pull_before_default = pull_before_default
        self.before_export = before_export
        if self.runner.cancel_event is None:
            self.runner.cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """Ask running and pending jobs to stop at their next stage boundary."""
        if self.runner.cancel_event is None:
            self.runner.cancel_event = asyncio.Event()
        self.runner.cancel_event.set()

    async def export_selected(self) -> BatchResult:
        """Export every selected form that has a valid configuration.

        Returns:
            Outcomes keyed by form identifier
        """
        configurations = self.registry.valid_configurations()
        targets = [
            form for form in self.registry.selected_forms() if form.form_id in configurations
        ]
        skipped = len(self.registry.selected_forms()) - len(targets)
        if skipped:
            logger.info("Skipping %d selected forms without a valid configuration", skipped)
        return await self.export_forms(targets, configurations)

    async def export_forms(
        self,
        forms: Iterable[FormDefinition],
        configurations: dict[str, ExportConfiguration] | None = None,
    ) -> BatchResult:
        """Export the given forms independently of one another.

        Args:
            forms: Forms to export
            configurations: Configurations to use (default: the registry's)

        Returns:
            Outcomes keyed by form identifier

        Raises:
            FormNotFoundError: If a form is not in the registry
        """
        forms = list(forms)
        semaphore = asyncio.Semaphore(self.max_parallel)
        jobs = []
        for form in forms:
            configuration = (configurations or {}).get(form.form_id)
            if configuration is None:
                configuration = self.registry.get_configuration(form)
            jobs.append(self._export_one(form, configuration, semaphore))

        logger.info("Exporting %d forms with up to %d workers", len(jobs), self.max_parallel)
        outcomes = await asyncio.gather(*jobs)
        result = BatchResult(outcomes={outcome.form_id: outcome for outcome in outcomes})
        logger.info(
            "Batch export finished: %d succeeded, %d failed",
            result.success_count,
            result.error_count,
        )
        return result

    async def _export_one(
        self,
        form: FormDefinition,
        configuration: ExportConfiguration,
        semaphore: asyncio.Semaphore,
    ) -> ExportOutcome:
        async with semaphore:
            try:
                if self.before_export and configuration.resolve_pull_before(self.pull_before_default):
                    await self.before_export(form)
                return await self.runner.run(form, configuration)
            except FormNotFoundError:
                raise
            except Exception as e:
                logger.exception("Unexpected error exporting form %s", form.form_id)
                message = f"Export failed: {e}"
                self.registry.record_outcome(form.form_id, message, False)
                return ExportOutcome(
                    form_id=form.form_id,
                    succeeded=False,
                    message=message,
                    error_type=type(e).__name__,
                )
