"""
AES-256-GCM cipher for third-party credentials at rest.
"""

import binascii
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shared.errors import ConfigurationError, FormatError, IntegrityError
from shared.logging import get_logger
from shared.secrets_manager import SecretStore

ALGORITHM = "aes-256-gcm"
KEY_LENGTH = 32  # bytes
IV_LENGTH = 16   # bytes
TAG_LENGTH = 16  # bytes

ENCRYPTION_KEY_NAME = "ENCRYPTION_KEY"


@dataclass(frozen=True)
class EncryptedBlob:
    """Ciphertext, IV and GCM tag, each as raw bytes."""
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes

    def to_dict(self) -> Dict[str, str]:
        """Hex-encode the three fields under their persisted names."""
        return {
            "encrypted": self.ciphertext.hex(),
            "iv": self.iv.hex(),
            "authTag": self.auth_tag.hex(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EncryptedBlob":
        """Parse the persisted form, rejecting anything incomplete or malformed."""
        if not isinstance(data, Mapping):
            raise FormatError()

        fields = {}
        for name in ("encrypted", "iv", "authTag"):
            value = data.get(name)
            if not isinstance(value, str) or not value:
                raise FormatError()
            try:
                fields[name] = bytes.fromhex(value)
            except ValueError:
                raise FormatError() from None

        if len(fields["iv"]) != IV_LENGTH or len(fields["authTag"]) != TAG_LENGTH:
            raise FormatError()

        return cls(ciphertext=fields["encrypted"], iv=fields["iv"], auth_tag=fields["authTag"])


class CredentialCipher:
    """Authenticated encryption with a single injected 256-bit key.

    Stateless per call, so one instance is shared by all request workers.
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise ConfigurationError(f"Encryption key must be exactly {KEY_LENGTH} bytes")
        self._aead = AESGCM(bytes(key))
        self.logger = get_logger("access.cipher")

    def encrypt(self, plaintext: bytes) -> EncryptedBlob:
        """Encrypt under a fresh random IV."""
        if not plaintext:
            raise ValueError("Text to encrypt cannot be empty")

        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, bytes(plaintext), None)

        # cryptography appends the tag to the ciphertext
        return EncryptedBlob(
            ciphertext=sealed[:-TAG_LENGTH],
            iv=iv,
            auth_tag=sealed[-TAG_LENGTH:],
        )

    def decrypt(self, blob: EncryptedBlob) -> bytes:
        """Verify the tag and return the plaintext, failing closed."""
        if not isinstance(blob, EncryptedBlob):
            raise FormatError()
        if (
            not blob.ciphertext
            or len(blob.iv) != IV_LENGTH
            or len(blob.auth_tag) != TAG_LENGTH
        ):
            raise FormatError()

        try:
            return self._aead.decrypt(blob.iv, blob.ciphertext + blob.auth_tag, None)
        except InvalidTag:
            self.logger.warning("Credential tag verification failed")
            raise IntegrityError() from None


def load_encryption_key(secret_store: SecretStore) -> bytes:
    """Read and decode the 64-hex-character key once at startup."""
    raw = secret_store.get(ENCRYPTION_KEY_NAME)
    if not raw:
        raise ConfigurationError(f"{ENCRYPTION_KEY_NAME} is not set")

    raw = raw.strip()
    if len(raw) != KEY_LENGTH * 2:
        raise ConfigurationError(
            f"{ENCRYPTION_KEY_NAME} must be {KEY_LENGTH * 2} characters ({KEY_LENGTH} bytes hex)"
        )

    try:
        key = binascii.unhexlify(raw)
    except (binascii.Error, ValueError):
        raise ConfigurationError(f"{ENCRYPTION_KEY_NAME} must be hex encoded") from None

    return key
