"""Service layer for form export."""

from form_export.services.batch_service import BatchExportService
from form_export.services.credential_service import Credential, CredentialResolver
from form_export.services.csv_converter import CsvConverter
from form_export.services.discovery_service import FormDiscoveryService
from form_export.services.export_job import Converter, ExportJobRunner
from form_export.services.registry import ExportForms

__all__ = [
    "ExportForms",
    "ExportJobRunner",
    "BatchExportService",
    "Converter",
    "CsvConverter",
    "Credential",
    "CredentialResolver",
    "FormDiscoveryService",
]
