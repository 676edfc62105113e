"""
Ed25519 signing of mandate challenges.

The payer signs the raw challenge bytes (never the base64 text) and sends the
signature together with its raw 32-byte public key, both base64-encoded.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .storage import ensure_private_dir, ensure_private_file

logger = logging.getLogger(__name__)


class MandateSigner:
    """Holds one Ed25519 keypair for the lifetime of the process."""

    def __init__(self, private_key: ed25519.Ed25519PrivateKey):
        self._private_key = private_key

    @classmethod
    def generate(cls) -> MandateSigner:
        return cls(ed25519.Ed25519PrivateKey.generate())

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]]) -> MandateSigner:
        """Load a key, creating it if the file does not exist.

        With no path an ephemeral key is generated. An unreadable key file
        also falls back to an ephemeral key, with a warning.
        """
        if not path:
            logger.info("No private key path configured; using an ephemeral Ed25519 key")
            return cls.generate()

        key_path = Path(path).expanduser()
        try:
            if key_path.exists():
                signer = cls(parse_private_key(key_path.read_text()))
                logger.info("Loaded Ed25519 key from %s", key_path)
                return signer
            signer = cls.generate()
            signer.save(key_path)
            logger.info("Generated new Ed25519 key and saved it to %s", key_path)
            return signer
        except (OSError, ValueError) as e:
            logger.warning("Failed to load key from %s, using an ephemeral key: %s", key_path, e)
            return cls.generate()

    def save(self, path: Path) -> None:
        ensure_private_dir(path.parent)
        pem = self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        ensure_private_file(path)
        path.write_bytes(pem)

    @property
    def public_key_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self.public_key_bytes).decode("ascii")

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def sign_challenge(self, challenge_data: str) -> str:
        """Sign a base64 challenge; returns the base64 signature."""
        challenge = base64.b64decode(challenge_data)
        return base64.b64encode(self.sign(challenge)).decode("ascii")


def parse_private_key(key_data: str) -> ed25519.Ed25519PrivateKey:
    """Accept a PKCS8 PEM key or a base64 raw key (32-byte seed or 64-byte seed+public)."""
    # Handle literal '\n' sequences often present in unquoted env vars.
    if "\\n" in key_data:
        key_data = key_data.replace("\\n", "\n")

    if "PRIVATE KEY" in key_data:
        key = serialization.load_pem_private_key(key_data.encode("utf-8"), password=None)
        if not isinstance(key, ed25519.Ed25519PrivateKey):
            raise ValueError("PEM key is not an Ed25519 private key")
        return key

    try:
        decoded = base64.b64decode(key_data.strip(), validate=True)
    except binascii.Error as e:
        raise ValueError("Private key must be PEM or base64") from e
    if len(decoded) not in (32, 64):
        raise ValueError(f"Raw Ed25519 key must be 32 or 64 bytes, got {len(decoded)}")
    return ed25519.Ed25519PrivateKey.from_private_bytes(decoded[:32])


def verify_signature(message: bytes, signature_b64: str, public_key_b64: str) -> bool:
    """True iff ``signature_b64`` is a valid Ed25519 signature of ``message``."""
    try:
        signature = base64.b64decode(signature_b64, validate=True)
        public_key = ed25519.Ed25519PublicKey.from_public_bytes(
            base64.b64decode(public_key_b64, validate=True)
        )
        public_key.verify(signature, message)
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False
