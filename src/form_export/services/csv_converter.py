"""Default converter writing a form's submissions to a CSV file."""

import asyncio
import base64
import csv
import hashlib
import logging
import xml.etree.ElementTree as ET
from datetime import date, datetime
from pathlib import Path

import aiofiles
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from form_export.exceptions import ConverterError
from form_export.models.form import FormDefinition
from form_export.services.credential_service import Credential
from form_export.services.discovery_service import local_name
from form_export.services.export_job import Converter

logger = logging.getLogger(__name__)

INSTANCES_DIR = "instances"
SUBMISSION_FILE = "submission.xml"
SUBMISSION_DATE_COLUMN = "SubmissionDate"
KEY_COLUMN = "KEY"


def submission_iv_seed(instance_id: str, symmetric_key: bytes) -> bytearray:
    """Initial IV seed of an encrypted submission: MD5(instance id + key)."""
    return bytearray(hashlib.md5(instance_id.encode("utf-8") + symmetric_key).digest())


def next_iv(seed: bytearray, counter: int) -> bytes:
    """Advance the seed for the counter-th encrypted file and return the IV."""
    index = counter % len(seed)
    seed[index] = (seed[index] + 1) & 0xFF
    return bytes(seed)


def decrypt_file(data: bytes, symmetric_key: bytes, iv: bytes) -> bytes:
    """Decrypt one AES-CFB encrypted, PKCS#7 padded submission file."""
    decryptor = Cipher(algorithms.AES(symmetric_key), modes.CFB(iv)).decryptor()
    padded = decryptor.update(data) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element.iter():
        if local_name(child.tag) == name:
            return child
    return None


def _text(element: ET.Element, name: str) -> str | None:
    child = _child(element, name)
    return (child.text or "").strip() if child is not None else None


def _submission_date(root: ET.Element) -> datetime | None:
    raw = root.attrib.get("submissionDate")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.debug("Unparseable submissionDate %r", raw)
        return None


def flatten(root: ET.Element) -> dict[str, str]:
    """Flatten leaf elements into columns named by their group path."""
    row: dict[str, str] = {}

    def walk(element: ET.Element, prefix: str) -> None:
        for child in element:
            name = local_name(child.tag)
            path = f"{prefix}-{name}" if prefix else name
            if len(child):
                walk(child, path)
            else:
                row[path] = (child.text or "").strip()

    walk(root, "")
    return row


class CsvConverter(Converter):
    """Exports `<form dir>/instances/*/submission.xml` to `<form name>.csv`."""

    async def convert(
        self,
        form: FormDefinition,
        credential: Credential | None,
        start_date: date | None,
        end_date: date | None,
        output_dir: Path,
    ) -> None:
        if form.form_dir is None:
            raise ConverterError(f"No storage directory known for form {form.form_id}")
        instances_dir = Path(form.form_dir) / INSTANCES_DIR

        rows: list[dict[str, str]] = []
        try:
            instance_dirs = sorted(p for p in instances_dir.iterdir() if p.is_dir()) if instances_dir.is_dir() else []
        except OSError as e:
            raise ConverterError(f"Can't list submissions of {form.form_id}: {e}") from e
        for instance_dir in instance_dirs:
            try:
                root = await self._read_submission(instance_dir, credential)
            except (OSError, ET.ParseError, ValueError) as e:
                raise ConverterError(f"Can't read submission {instance_dir.name}: {e}") from e

            submitted_at = _submission_date(root)
            if submitted_at is not None and not _in_range(submitted_at.date(), start_date, end_date):
                continue

            row = {
                SUBMISSION_DATE_COLUMN: submitted_at.isoformat() if submitted_at else "",
                **flatten(root),
            }
            row[KEY_COLUMN] = _text(root, "instanceID") or instance_dir.name
            rows.append(row)

        output_file = output_dir / f"{form.form_name}.csv"
        try:
            await asyncio.to_thread(_write_csv, output_file, rows)
        except OSError as e:
            raise ConverterError(f"Can't write {output_file}: {e}") from e
        logger.info("Wrote %d submissions of %s to %s", len(rows), form.form_id, output_file)

    async def _read_submission(
        self, instance_dir: Path, credential: Credential | None
    ) -> ET.Element:
        async with aiofiles.open(instance_dir / SUBMISSION_FILE, "rb") as f:
            root = ET.fromstring(await f.read())

        if root.attrib.get("encrypted", "").lower() != "yes":
            return root
        if credential is None:
            raise ConverterError(f"Submission {instance_dir.name} is encrypted and no private key was given")

        encrypted_key = _text(root, "base64EncryptedKey")
        instance_id = _text(root, "instanceID")
        xml_file = _text(root, "encryptedXmlFile")
        if not encrypted_key or not instance_id or not xml_file:
            raise ValueError("incomplete encryption manifest")

        symmetric_key = credential.unwrap_key(base64.b64decode(encrypted_key))
        seed = submission_iv_seed(instance_id, symmetric_key)
        media = [
            (element.text or "").strip()
            for element in root.iter()
            if local_name(element.tag) == "file"
        ]
        # Media files come first in the IV sequence; only the XML is decrypted here
        for counter in range(len(media)):
            next_iv(seed, counter)
        iv = next_iv(seed, len(media))

        async with aiofiles.open(instance_dir / xml_file, "rb") as f:
            plain = decrypt_file(await f.read(), symmetric_key, iv)

        decrypted = ET.fromstring(plain)
        if "submissionDate" in root.attrib:
            decrypted.set("submissionDate", root.attrib["submissionDate"])
        return decrypted


def _in_range(day: date, start_date: date | None, end_date: date | None) -> bool:
    if start_date is not None and day < start_date:
        return False
    if end_date is not None and day > end_date:
        return False
    return True


def _write_csv(output_file: Path, rows: list[dict[str, str]]) -> None:
    columns: list[str] = []
    for row in rows:
        for column in row:
            if column not in columns:
                columns.append(column)
    if not columns:
        columns = [SUBMISSION_DATE_COLUMN, KEY_COLUMN]

    with open(output_file, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns, restval="")
        writer.writeheader()
        writer.writerows(rows)
