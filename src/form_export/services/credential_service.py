"""Private key resolution from PEM files."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import aiofiles
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from form_export.exceptions import CredentialError, CredentialErrorReason

logger = logging.getLogger(__name__)

_PEM_LABEL = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----")

# Labels whose payload carries the public half alongside the private key
_KEY_PAIR_LABELS = {b"RSA PRIVATE KEY", b"EC PRIVATE KEY", b"DSA PRIVATE KEY"}


@dataclass(frozen=True)
class Credential:
    """A private key usable for decrypting a form's submissions.

    Never persisted; resolved fresh from the PEM file for every run.
    """

    private_key: PrivateKeyTypes
    source: Path

    def unwrap_key(self, encrypted_key: bytes) -> bytes:
        """Decrypt an RSA-OAEP wrapped symmetric key.

        Args:
            encrypted_key: Wrapped key bytes

        Returns:
            Plain symmetric key

        Raises:
            ValueError: If the key is not an RSA key or decryption fails
        """
        if not isinstance(self.private_key, rsa.RSAPrivateKey):
            raise ValueError("Only RSA private keys can unwrap submission keys")
        return self.private_key.decrypt(
            encrypted_key,
            padding.OAEP(
                mgf=padding.MGF1(algorithm=hashes.SHA1()),
                algorithm=hashes.SHA256(),
                label=None,
            ),
        )


class CredentialResolver:
    """Resolves PEM files into private keys."""

    async def resolve(self, pem_path: Path | str) -> Credential:
        """Parse a PEM file and extract its private key.

        The first PEM object in the file decides the outcome: a key pair
        yields its private half, a bare private key is used directly, and
        anything else (public keys, certificates) has no private key.

        Args:
            pem_path: Path to the PEM file

        Returns:
            Credential wrapping the private key

        Raises:
            CredentialError: FILE_MISSING, PARSE_FAILED or NO_PRIVATE_KEY
        """
        path = Path(pem_path)
        if not path.exists():
            raise CredentialError(CredentialErrorReason.FILE_MISSING, path)

        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except OSError as e:
            raise CredentialError(CredentialErrorReason.PARSE_FAILED, path) from e

        match = _PEM_LABEL.search(data)
        if match is None:
            raise CredentialError(CredentialErrorReason.PARSE_FAILED, path)
        label = match.group(1)

        if label.endswith(b"PRIVATE KEY"):
            try:
                private_key = serialization.load_pem_private_key(data[match.start():], password=None)
            except (ValueError, TypeError, UnsupportedAlgorithm) as e:
                raise CredentialError(CredentialErrorReason.PARSE_FAILED, path) from e
            kind = "key pair" if label in _KEY_PAIR_LABELS else "private key"
            logger.debug("Parsed %s from %s", kind, path)
            return Credential(private_key=private_key, source=path)

        if not self._parses_as_public_material(label, data[match.start():]):
            raise CredentialError(CredentialErrorReason.PARSE_FAILED, path)
        raise CredentialError(CredentialErrorReason.NO_PRIVATE_KEY, path)

    @staticmethod
    def _parses_as_public_material(label: bytes, data: bytes) -> bool:
        try:
            if label == b"CERTIFICATE":
                x509.load_pem_x509_certificate(data)
            elif label.endswith(b"PUBLIC KEY"):
                serialization.load_pem_public_key(data)
            else:
                return False
        except (ValueError, UnsupportedAlgorithm):
            return False
        return True
