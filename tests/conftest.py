"""Pytest configuration and fixtures for form export tests."""

from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from form_export.config.settings import Settings
from form_export.db.preferences import InMemoryPreferenceStore
from form_export.exceptions import ConverterError
from form_export.models.form import FormDefinition
from form_export.services.credential_service import Credential
from form_export.services.export_job import Converter
from form_export.services.registry import ExportForms


class FakeConverter(Converter):
    """Converter recording its calls, failing for chosen form ids."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[dict] = []

    async def convert(
        self,
        form: FormDefinition,
        credential: Credential | None,
        start_date: date | None,
        end_date: date | None,
        output_dir: Path,
    ) -> None:
        self.calls.append(
            {
                "form_id": form.form_id,
                "credential": credential,
                "start_date": start_date,
                "end_date": end_date,
                "output_dir": output_dir,
            }
        )
        if form.form_id in self.failing:
            raise ConverterError(f"Conversion of {form.form_id} failed")


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Test configuration settings."""
    return Settings(
        storage_dir=str(tmp_path / "storage"),
        preferences_path=str(tmp_path / "data" / "preferences.db"),
        max_parallel_exports=2,
        log_level="DEBUG",
    )


@pytest.fixture
def store() -> InMemoryPreferenceStore:
    """Empty in-memory preference store."""
    return InMemoryPreferenceStore()


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    """Existing output directory outside reserved locations."""
    path = tmp_path / "exports"
    path.mkdir()
    return path


@pytest.fixture
def plain_form() -> FormDefinition:
    return FormDefinition(form_id="household", form_name="Household Survey")


@pytest.fixture
def encrypted_form() -> FormDefinition:
    return FormDefinition(form_id="clinic", form_name="Clinic Visit", file_encrypted=True)


@pytest.fixture
def registry(plain_form: FormDefinition, encrypted_form: FormDefinition) -> ExportForms:
    return ExportForms([plain_form, encrypted_form])


@pytest.fixture
def fake_converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """RSA key shared across the session (key generation is slow)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def key_pair_pem(tmp_path: Path, private_key: rsa.RSAPrivateKey) -> Path:
    """PEM file holding a traditional RSA key pair."""
    path = tmp_path / "keypair.pem"
    path.write_bytes(
        private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture
def private_key_pem(tmp_path: Path, private_key: rsa.RSAPrivateKey) -> Path:
    """PEM file holding a bare PKCS#8 private key."""
    path = tmp_path / "private.pem"
    path.write_bytes(
        private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture
def public_key_pem(tmp_path: Path, private_key: rsa.RSAPrivateKey) -> Path:
    """PEM file holding only the public key."""
    path = tmp_path / "public.pem"
    path.write_bytes(
        private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return path


@pytest.fixture
def certificate_pem(tmp_path: Path, private_key: rsa.RSAPrivateKey) -> Path:
    """PEM file holding only a self-signed certificate."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "form-export test")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    path = tmp_path / "certificate.pem"
    path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    return path


@pytest.fixture
def make_converter():
    """Factory for fake converters failing on the given form ids."""

    def factory(*failing: str) -> FakeConverter:
        return FakeConverter(set(failing))

    return factory
