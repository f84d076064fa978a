"""Tests for the command-line entry point."""

import csv
from pathlib import Path

import pytest

from form_export.__main__ import cli, main, parse_args
from form_export.config import reset_settings, set_settings
from form_export.db.preferences import SqlitePreferenceStore

from storage_helpers import write_form, write_submission


@pytest.fixture
def storage(test_settings) -> Path:
    storage = Path(test_settings.storage_dir)
    household = write_form(storage, "household", "Household Survey")
    write_submission(household, "household", "uuid:1", "2020-01-10T09:00:00Z", "Ana", 4)
    write_form(storage, "clinic", "Clinic Visit", file_encrypted=True)
    return storage


async def _run(settings, *argv: str) -> int:
    return await main(parse_args(list(argv)), settings)


async def _stored(settings, key: str) -> str | None:
    store = SqlitePreferenceStore(settings.preferences_path)
    await store.connect()
    try:
        return await store.get(key)
    finally:
        await store.close()


@pytest.mark.asyncio
class TestExportCommand:
    async def test_export_writes_csv_and_watermark(self, test_settings, storage, export_dir):
        code = await _run(test_settings, "export", "--form-id", "household", "--export-dir", str(export_dir))

        assert code == 0
        with open(export_dir / "Household Survey.csv", newline="") as f:
            assert [row["name"] for row in csv.DictReader(f)] == ["Ana"]
        assert await _stored(test_settings, "export_date_household") is not None

    async def test_unknown_form(self, test_settings, storage, export_dir, capsys):
        code = await _run(test_settings, "export", "--form-id", "ghost", "--export-dir", str(export_dir))

        assert code == 1
        assert "Form ghost not found" in capsys.readouterr().err

    async def test_encrypted_form_without_pem(self, test_settings, storage, export_dir, capsys):
        code = await _run(test_settings, "export", "--form-id", "clinic", "--export-dir", str(export_dir))

        assert code == 1
        assert "Missing pem file configuration" in capsys.readouterr().out
        assert await _stored(test_settings, "export_date_clinic") is None

    async def test_encrypted_form_with_public_key(self, test_settings, storage, export_dir, public_key_pem):
        code = await _run(
            test_settings,
            "export", "--form-id", "clinic", "--export-dir", str(export_dir), "--pem-file", str(public_key_pem),
        )

        assert code == 1

    async def test_invalid_date_range(self, test_settings, storage, export_dir):
        code = await _run(
            test_settings,
            "export", "--form-id", "household", "--export-dir", str(export_dir),
            "--start", "2020-02-01", "--end", "2020-01-01",
        )

        assert code == 1
        assert not (export_dir / "Household Survey.csv").exists()

    async def test_export_dir_inside_storage(self, test_settings, storage):
        code = await _run(test_settings, "export", "--form-id", "household", "--export-dir", str(storage))

        assert code == 1


@pytest.mark.asyncio
class TestBatchCommands:
    async def test_configure_then_export_all(self, test_settings, storage, export_dir, capsys):
        assert await _run(test_settings, "configure", "--form-id", "household", "--export-dir", str(export_dir)) == 0
        assert await _stored(test_settings, "custom_household_export_dir") == str(export_dir)

        code = await _run(test_settings, "export-all")

        assert code == 0
        assert (export_dir / "Household Survey.csv").exists()
        assert "1 forms exported, 0 failed" in capsys.readouterr().out

    async def test_configure_rejects_invalid(self, test_settings, storage, export_dir):
        code = await _run(test_settings, "configure", "--form-id", "clinic", "--export-dir", str(export_dir))

        assert code == 1
        assert await _stored(test_settings, "custom_clinic_export_dir") is None

    async def test_configure_clear(self, test_settings, storage, export_dir):
        await _run(test_settings, "configure", "--form-id", "household", "--export-dir", str(export_dir))

        assert await _run(test_settings, "configure", "--form-id", "household", "--clear") == 0
        assert await _stored(test_settings, "custom_household_export_dir") is None

    async def test_export_all_without_configurations(self, test_settings, storage, capsys):
        assert await _run(test_settings, "export-all") == 0
        assert "No form has a valid export configuration" in capsys.readouterr().out

    async def test_list(self, test_settings, storage, export_dir, capsys):
        await _run(test_settings, "export", "--form-id", "household", "--export-dir", str(export_dir))
        capsys.readouterr()

        assert await _run(test_settings, "list") == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("clinic\tClinic Visit (encrypted)\tlast export: never")
        assert lines[1].startswith("household\tHousehold Survey")
        assert "never" not in lines[1]


def test_unknown_log_level_exits_cleanly(test_settings, capsys):
    set_settings(test_settings)
    try:
        with pytest.raises(SystemExit) as exc_info:
            cli(["--log-level", "chatty", "list"])
    finally:
        reset_settings()

    assert exc_info.value.code == 1
    assert "Unknown log level: chatty" in capsys.readouterr().err
