"""Authentication of files downloaded from the plugin repository.

Every rpkg published in the repository comes with two companion files:

* ``<file>.sha512sum`` holding ``<hex sha512>  <file name>`` lines,
* ``<file>.sha512sum.sign`` holding a base64 RSA-PSS/SHA-256 signature of the
  checksum file.

A download is trusted when the signature was made by one of the keys of the
local keyring and the checksum matches the downloaded content.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from rudder_package.core.logging_manager import get_logger
from rudder_package.utils.exceptions import SignatureError

logger = get_logger(__name__)

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN PUBLIC KEY-----.+?-----END PUBLIC KEY-----", re.DOTALL
)


@dataclass
class TrustedKey:
    """Public key allowed to sign repository files.

    Attributes:
        public_key: PEM encoded public key
        fingerprint: SHA-256 of the PEM encoding
    """

    public_key: bytes
    fingerprint: str

    @classmethod
    def from_pem(cls, pem: bytes) -> TrustedKey:
        return cls(public_key=pem, fingerprint=hashlib.sha256(pem).hexdigest())


def file_sha512(path: Union[str, Path]) -> str:
    digest = hashlib.sha512()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_checksums(text: str) -> Dict[str, str]:
    """Map file names to hex digests from ``sha512sum`` output."""
    checksums: Dict[str, str] = {}
    for line in text.splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2:
            continue
        digest, name = parts
        checksums[os.path.basename(name.lstrip("*"))] = digest.lower()
    return checksums


class SignatureVerifier:
    """Verifies repository signatures against trusted keys.

    Attributes:
        trusted_keys: Keys accepted as signers
    """

    def __init__(self, trusted_keys: Optional[List[TrustedKey]] = None) -> None:
        self.trusted_keys: List[TrustedKey] = list(trusted_keys or [])

    @classmethod
    def from_keyring(cls, path: Union[str, Path]) -> SignatureVerifier:
        """Load every public key of a PEM keyring.

        Raises:
            SignatureError: If the keyring cannot be read or holds no key
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise SignatureError(f"Cannot read keyring {path}: {e}", path=str(path)) from e

        keys = [TrustedKey.from_pem(block) for block in _PEM_BLOCK_RE.findall(data)]
        if not keys:
            raise SignatureError(f"No public key found in keyring {path}", path=str(path))
        logger.debug("Loaded keyring", keyring=str(path), keys=len(keys))
        return cls(keys)

    def add_trusted_key(self, key: TrustedKey) -> None:
        if all(k.fingerprint != key.fingerprint for k in self.trusted_keys):
            self.trusted_keys.append(key)

    def verify_signature(self, data: bytes, signature: bytes) -> Optional[TrustedKey]:
        """Find the trusted key that produced ``signature`` over ``data``.

        Args:
            data: Signed content
            signature: Raw signature bytes

        Returns:
            The signing key, or None if no trusted key matches
        """
        for key in self.trusted_keys:
            try:
                public_key = serialization.load_pem_public_key(key.public_key)
            except ValueError:
                logger.warning("Skipping unreadable trusted key", fingerprint=key.fingerprint)
                continue
            if not isinstance(public_key, rsa.RSAPublicKey):
                continue
            try:
                public_key.verify(
                    signature,
                    data,
                    padding.PSS(
                        mgf=padding.MGF1(hashes.SHA256()),
                        salt_length=padding.PSS.MAX_LENGTH
                    ),
                    hashes.SHA256()
                )
            except InvalidSignature:
                continue
            return key
        return None

    def verify_file(
            self,
            path: Union[str, Path],
            checksum_path: Union[str, Path],
            signature_path: Union[str, Path],
            expected_name: Optional[str] = None
    ) -> None:
        """Check a downloaded file against its signed checksum.

        Args:
            path: The downloaded file
            checksum_path: Its ``.sha512sum`` file
            signature_path: The ``.sha512sum.sign`` file
            expected_name: Name of the file in the checksum list, defaults to the base name of ``path``

        Raises:
            SignatureError: If the signature or the checksum does not match
        """
        path = Path(path)
        try:
            checksum_data = Path(checksum_path).read_bytes()
            signature_text = Path(signature_path).read_bytes()
        except OSError as e:
            raise SignatureError(f"Cannot read signature files of {path}: {e}", path=str(path)) from e

        try:
            signature = base64.b64decode(signature_text.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise SignatureError(f"Malformed signature for {path}: {e}", path=str(path)) from e

        key = self.verify_signature(checksum_data, signature)
        if key is None:
            raise SignatureError(f"No trusted key signed the checksum of {path}", path=str(path))

        checksums = parse_checksums(checksum_data.decode("utf-8", errors="replace"))
        name = expected_name or path.name
        expected = checksums.get(name)
        if expected is None and len(checksums) == 1:
            expected = next(iter(checksums.values()))
        if expected is None:
            raise SignatureError(f"No checksum listed for {name}", path=str(path))

        if file_sha512(path) != expected:
            raise SignatureError(f"Checksum mismatch for {path}", path=str(path))

        logger.debug("Signature verified", file=str(path), fingerprint=key.fingerprint)
