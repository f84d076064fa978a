"""Tests for batch export across selected forms."""

import asyncio

import pytest

from form_export.db.preferences import InMemoryPreferenceStore
from form_export.exceptions import FormNotFoundError
from form_export.models.configuration import ExportConfiguration
from form_export.models.export import JobState
from form_export.models.form import FormDefinition
from form_export.services.batch_service import BatchExportService
from form_export.services.export_job import ExportJobRunner
from form_export.services.registry import ExportForms


@pytest.fixture
def three_forms() -> list[FormDefinition]:
    return [
        FormDefinition(form_id="a", form_name="A"),
        FormDefinition(form_id="b", form_name="B", field_encrypted=True),
        FormDefinition(form_id="c", form_name="C"),
    ]


@pytest.fixture
def batch_registry(three_forms, export_dir, public_key_pem) -> ExportForms:
    registry = ExportForms(three_forms)
    registry.set_configuration("a", ExportConfiguration(export_dir=export_dir))
    registry.set_configuration("b", ExportConfiguration(export_dir=export_dir, pem_file=public_key_pem))
    registry.set_configuration("c", ExportConfiguration(export_dir=export_dir))
    registry.select_all()
    return registry


@pytest.mark.asyncio
class TestExportSelected:
    @pytest.mark.parametrize("max_parallel", [1, 3])
    async def test_failure_is_isolated(self, batch_registry, fake_converter, store, max_parallel):
        runner = ExportJobRunner(batch_registry, fake_converter, store)
        batch = BatchExportService(batch_registry, runner, max_parallel=max_parallel)

        result = await batch.export_selected()

        assert set(result.outcomes) == {"a", "b", "c"}
        assert result.outcomes["a"].succeeded
        assert result.outcomes["c"].succeeded
        assert not result.outcomes["b"].succeeded
        assert result.outcomes["b"].error_type == "CredentialError"
        assert result.success_count == 2
        assert result.error_count == 1
        assert [o.form_id for o in result.failed] == ["b"]
        assert sorted(call["form_id"] for call in fake_converter.calls) == ["a", "c"]
        assert not batch_registry.status("b").last_status.succeeded

    async def test_only_selected_valid_forms_run(self, batch_registry, fake_converter, store):
        batch_registry.select("c", False)
        batch_registry.remove_configuration("a")
        runner = ExportJobRunner(batch_registry, fake_converter, store)

        result = await BatchExportService(batch_registry, runner).export_selected()

        assert list(result.outcomes) == ["b"]

    async def test_converter_failure_does_not_abort_batch(self, batch_registry, make_converter, store, key_pair_pem, export_dir):
        batch_registry.set_configuration("b", ExportConfiguration(export_dir=export_dir, pem_file=key_pair_pem))
        converter = make_converter("a")
        runner = ExportJobRunner(batch_registry, converter, store)

        result = await BatchExportService(batch_registry, runner, max_parallel=2).export_selected()

        assert not result.outcomes["a"].succeeded
        assert result.outcomes["b"].succeeded
        assert result.outcomes["c"].succeeded
        assert batch_registry.last_export_time("a") is None
        assert batch_registry.last_export_time("c") is not None

    async def test_unexpected_error_is_contained(self, batch_registry, fake_converter, store):
        async def crash(*args, **kwargs):
            raise OSError("disk full")

        fake_converter.convert = crash
        runner = ExportJobRunner(batch_registry, fake_converter, store)

        result = await BatchExportService(batch_registry, runner).export_selected()

        assert result.outcomes["a"].error_type == "OSError"
        assert result.outcomes["a"].message == "Export failed: disk full"
        assert result.outcomes["a"].failed_stage == JobState.DELEGATED
        assert result.outcomes["b"].error_type == "CredentialError"
        assert not result.outcomes["c"].succeeded

    async def test_export_date_write_failure_is_not_a_second_outcome(
        self, batch_registry, fake_converter
    ):
        class LockedStore(InMemoryPreferenceStore):
            async def put(self, key, value):
                raise OSError("db locked")

        runner = ExportJobRunner(batch_registry, fake_converter, LockedStore())

        result = await BatchExportService(batch_registry, runner).export_selected()

        assert result.outcomes["a"].succeeded
        assert [entry.succeeded for entry in batch_registry.status("a").status_log] == [True]
        assert batch_registry.last_export_time("a") == result.outcomes["a"].exported_at

    async def test_pool_bound_is_respected(self, batch_registry, store, export_dir, key_pair_pem):
        batch_registry.set_configuration("b", ExportConfiguration(export_dir=export_dir, pem_file=key_pair_pem))
        running = 0
        peak = 0

        class SlowConverter:
            async def convert(self, *args):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1

        runner = ExportJobRunner(batch_registry, SlowConverter(), store)  # type: ignore[arg-type]

        result = await BatchExportService(batch_registry, runner, max_parallel=2).export_selected()

        assert result.success_count == 3
        assert peak <= 2

    async def test_pull_before_hook(self, batch_registry, fake_converter, store, export_dir):
        batch_registry.set_configuration("a", ExportConfiguration(export_dir=export_dir, pull_before=True))
        batch_registry.set_configuration("c", ExportConfiguration(export_dir=export_dir, pull_before_inherit=True))
        pulled = []

        async def pull(form):
            pulled.append(form.form_id)

        runner = ExportJobRunner(batch_registry, fake_converter, store)
        batch = BatchExportService(batch_registry, runner, pull_before_default=True, before_export=pull)

        await batch.export_selected()

        assert sorted(pulled) == ["a", "c"]

    async def test_cancel_stops_remaining_jobs(self, batch_registry, fake_converter, store):
        runner = ExportJobRunner(batch_registry, fake_converter, store)
        batch = BatchExportService(batch_registry, runner)
        batch.cancel()

        result = await batch.export_selected()

        assert all(o.error_type == "ExportCancelledError" for o in result.outcomes.values())
        assert fake_converter.calls == []

    async def test_cancel_without_runner_event(self, batch_registry, fake_converter, store):
        runner = ExportJobRunner(batch_registry, fake_converter, store)
        batch = BatchExportService(batch_registry, runner)
        runner.cancel_event = None

        batch.cancel()

        assert runner.cancel_event is not None and runner.cancel_event.is_set()

    async def test_unknown_form_is_fatal(self, batch_registry, fake_converter, store):
        runner = ExportJobRunner(batch_registry, fake_converter, store)
        ghost = FormDefinition(form_id="ghost", form_name="Ghost")

        with pytest.raises(FormNotFoundError):
            await BatchExportService(batch_registry, runner).export_forms(
                [ghost], {"ghost": ExportConfiguration()}
            )


@pytest.mark.parametrize("max_parallel", [0, 9])
def test_pool_size_is_capped(batch_registry, fake_converter, store, max_parallel):
    runner = ExportJobRunner(batch_registry, fake_converter, store)
    with pytest.raises(ValueError):
        BatchExportService(batch_registry, runner, max_parallel=max_parallel)
