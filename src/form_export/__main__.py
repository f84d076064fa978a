"""Command-line entry point for form export."""

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

from form_export import __version__
from form_export.config import configure_logging, get_settings
from form_export.config.settings import Settings
from form_export.db.preferences import SqlitePreferenceStore
from form_export.exceptions import ConfigParseError, FormNotFoundError
from form_export.models.configuration import ExportConfiguration
from form_export.models.export import ExportEvent
from form_export.services.batch_service import BatchExportService
from form_export.services.csv_converter import CsvConverter
from form_export.services.discovery_service import FormDiscoveryService
from form_export.services.export_job import ExportJobRunner
from form_export.services.registry import ExportForms
from form_export.utils.validators import output_directory_error


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {value}") from e


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="form-export",
        description="Export archived form submissions to CSV",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Override the configured logging level")
    parser.add_argument("--storage-dir", type=Path, help="Local form storage directory")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export = subparsers.add_parser("export", help="Export one form")
    export.add_argument("--form-id", required=True, help="Form identifier")
    export.add_argument("--export-dir", type=Path, required=True, help="Export directory")
    export.add_argument("--start", type=_date, help="Export start date (inclusive)")
    export.add_argument("--end", type=_date, help="Export end date (inclusive)")
    export.add_argument("--pem-file", type=Path, help="PEM file for form decryption")

    subparsers.add_parser("export-all", help="Export every form with a valid stored configuration")

    configure = subparsers.add_parser("configure", help="Store a form's export configuration")
    configure.add_argument("--form-id", required=True, help="Form identifier")
    configure.add_argument("--export-dir", type=Path, help="Export directory")
    configure.add_argument("--start", type=_date, help="Export start date (inclusive)")
    configure.add_argument("--end", type=_date, help="Export end date (inclusive)")
    configure.add_argument("--pem-file", type=Path, help="PEM file for form decryption")
    pull = configure.add_mutually_exclusive_group()
    pull.add_argument("--pull-before", action="store_true", help="Pull before exporting")
    pull.add_argument("--inherit-pull-before", action="store_true", help="Use the default pull setting")
    configure.add_argument("--clear", action="store_true", help="Remove the stored configuration")

    subparsers.add_parser("list", help="List known forms and their last export")
    return parser.parse_args(argv)


def _print_event(event: ExportEvent) -> None:
    print(f"[{event.form_id}] {event.message}")


async def _load_registry(settings: Settings, storage_dir: Path, store: SqlitePreferenceStore) -> ExportForms:
    forms = FormDiscoveryService(storage_dir).discover()
    return await ExportForms.load(
        forms,
        store,
        reserved_names=settings.reserved_directory_names,
        reserved_dirs=[storage_dir],
    )


async def export_form(args: argparse.Namespace, registry: ExportForms, store: SqlitePreferenceStore) -> int:
    try:
        form = registry.get_form(args.form_id)
    except FormNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configuration = ExportConfiguration(
        export_dir=args.export_dir,
        pem_file=args.pem_file,
        start_date=args.start,
        end_date=args.end,
    )
    dir_error = output_directory_error(
        configuration.export_dir, registry.reserved_names, registry.reserved_dirs
    )
    if dir_error is not None:
        print(f"Error: {dir_error}", file=sys.stderr)
        return 1
    if configuration.has_invalid_date_range():
        print("Error: start date must be before or equal to end date", file=sys.stderr)
        return 1

    runner = ExportJobRunner(registry, CsvConverter(), store)
    runner.subscribe(_print_event)
    print(f"Exporting form {form.form_name} ({form.form_id}) to: {configuration.export_dir}")
    outcome = await runner.run(form, configuration)
    return 0 if outcome.succeeded else 1


async def export_all(settings: Settings, registry: ExportForms, store: SqlitePreferenceStore) -> int:
    registry.select_all()
    for form in registry.selected_forms():
        if registry.has_configuration(form) and not registry.has_valid_configuration(form):
            problems = "; ".join(registry.validation_errors(form))
            print(f"[{form.form_id}] Skipped: {problems}", file=sys.stderr)

    runner = ExportJobRunner(registry, CsvConverter(), store)
    runner.subscribe(_print_event)
    batch = BatchExportService(
        registry,
        runner,
        max_parallel=settings.max_parallel_exports,
        pull_before_default=settings.pull_before_default,
    )
    result = await batch.export_selected()
    if not result.outcomes:
        print("No form has a valid export configuration")
        return 0
    print(f"{result.success_count} forms exported, {result.error_count} failed")
    return 0 if result.error_count == 0 else 1


async def configure_form(args: argparse.Namespace, registry: ExportForms, store: SqlitePreferenceStore) -> int:
    try:
        form = registry.get_form(args.form_id)
    except FormNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.clear:
        registry.set_configuration(form, ExportConfiguration.empty())
        await registry.save_configuration(form, store)
        registry.remove_configuration(form)
        print(f"Cleared configuration of {form.form_id}")
        return 0

    configuration = ExportConfiguration(
        export_dir=args.export_dir,
        pem_file=args.pem_file,
        start_date=args.start,
        end_date=args.end,
        pull_before=args.pull_before,
        pull_before_inherit=args.inherit_pull_before,
    )
    registry.set_configuration(form, configuration)
    errors = registry.validation_errors(form)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1
    await registry.save_configuration(form, store)
    print(f"Saved configuration of {form.form_id}")
    return 0


def list_forms(registry: ExportForms) -> int:
    for form in registry.forms():
        exported_at = registry.last_export_time(form)
        last = exported_at.isoformat() if exported_at else "never"
        encrypted = " (encrypted)" if form.is_encrypted else ""
        print(f"{form.form_id}\t{form.form_name}{encrypted}\tlast export: {last}")
    return 0


async def main(args: argparse.Namespace, settings: Settings) -> int:
    """Run the selected command and return the process exit code."""
    storage_dir = args.storage_dir or Path(settings.storage_dir)
    store = SqlitePreferenceStore(settings.preferences_path)
    await store.connect()
    try:
        try:
            registry = await _load_registry(settings, storage_dir, store)
        except ConfigParseError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        if args.command == "export":
            return await export_form(args, registry, store)
        if args.command == "export-all":
            return await export_all(settings, registry, store)
        if args.command == "configure":
            return await configure_form(args, registry, store)
        return list_forms(registry)
    finally:
        await store.close()


def cli(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    try:
        settings = get_settings()
        configure_logging(settings, args.log_level)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(asyncio.run(main(args, settings)))


if __name__ == "__main__":
    cli()
