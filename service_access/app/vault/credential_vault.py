"""
Credential vault: structured credentials <-> sealed, transport-safe tokens.
"""

import base64
import binascii
import json
from typing import Any, Dict, Mapping, Optional

from shared.errors import FormatError, ValidationError, VaultError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..crypto.cipher import CredentialCipher, EncryptedBlob
from ..crypto.tokens import fingerprint
from .schemas import dump_connector_credentials, parse_connector_credentials


JSON_SCALARS = (str, int, float, bool, type(None))


def canonical_json(data: Mapping[str, Any]) -> bytes:
    """Deterministic UTF-8 JSON encoding used as the sealed plaintext."""
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def _check_round_trip(value: Any, path: str = "credentials"):
    """Reject values that would not open back to an equal map."""
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError("Credential keys must be strings", details={"field": path})
            _check_round_trip(item, f"{path}.{key}")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _check_round_trip(item, f"{path}[{index}]")
    elif type(value) not in JSON_SCALARS:
        raise ValidationError("Credentials must be JSON serializable", details={"field": path})


class CredentialVault:
    """Seals credential maps into opaque tokens and opens them again.

    Token format (stable; changing it means re-sealing every stored token)::

        base64( json({"encrypted": hex, "iv": hex, "authTag": hex}) )
    """

    def __init__(self, cipher: CredentialCipher, metrics: Optional[MetricsCollector] = None):
        self.cipher = cipher
        self.metrics = metrics
        self.logger = get_logger("access.vault")

    def seal(self, credentials: Mapping[str, Any]) -> str:
        """Encrypt a credentials map into a sealed token."""
        if not isinstance(credentials, Mapping):
            raise ValidationError("Credentials must be an object")

        try:
            _check_round_trip(credentials)
        except ValidationError:
            self._record("seal", False)
            raise

        try:
            plaintext = canonical_json(credentials)
        except (TypeError, ValueError):
            self._record("seal", False)
            raise ValidationError("Credentials must be JSON serializable") from None

        blob = self.cipher.encrypt(plaintext)
        envelope = json.dumps(blob.to_dict(), separators=(",", ":")).encode("ascii")
        token = base64.b64encode(envelope).decode("ascii")

        self._record("seal", True)
        self.logger.debug("Credentials sealed", token_fingerprint=fingerprint(token))
        return token

    def open(self, token: str) -> Dict[str, Any]:
        """Decrypt a sealed token back into its credentials map."""
        try:
            result = self._open(token)
        except VaultError as e:
            self._record("open", False)
            self.logger.warning(
                "Credentials decryption failed",
                reason=e.code,
                token_fingerprint=fingerprint(token) if isinstance(token, str) else None,
            )
            raise VaultError() from e

        self._record("open", True)
        return result

    def _open(self, token: str) -> Dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise FormatError()

        try:
            envelope = json.loads(base64.b64decode(token.encode("ascii"), validate=True))
        except (binascii.Error, UnicodeError, ValueError):
            raise FormatError() from None

        blob = EncryptedBlob.from_dict(envelope)
        plaintext = self.cipher.decrypt(blob)

        try:
            credentials = json.loads(plaintext.decode("utf-8"))
        except (UnicodeError, ValueError):
            raise FormatError() from None

        if not isinstance(credentials, dict):
            raise FormatError()
        return credentials

    def seal_connector(self, credentials) -> str:
        """Seal a validated connector credentials model (or a raw map to validate)."""
        if isinstance(credentials, Mapping):
            credentials = parse_connector_credentials(credentials)
        return self.seal(dump_connector_credentials(credentials))

    def open_connector(self, token: str, connector_type: Optional[str] = None):
        """Open a token and re-validate it against its connector schema."""
        data = self.open(token)
        try:
            credentials = parse_connector_credentials(data)
        except ValidationError:
            self.logger.warning("Opened credentials do not match any connector schema")
            raise VaultError() from None

        if connector_type is not None and credentials.type != connector_type:
            self.logger.warning(
                "Opened credentials belong to another connector",
                expected=connector_type,
                actual=credentials.type,
            )
            raise VaultError()
        return credentials

    def _record(self, operation: str, success: bool):
        if self.metrics is not None:
            self.metrics.record_vault_operation(operation, success)
