"""
Secrets lookup for the access layer services.
"""

import json
import os
from typing import Dict, Mapping, Optional, Protocol

from .logging import get_logger

logger = get_logger("shared.secrets")


class SecretStore(Protocol):
    """Read-only source of named secrets."""

    def get(self, key: str) -> Optional[str]:
        ...


class EnvSecretStore:
    """
    Resolves secrets from the environment, then from a JSON secrets file.

    Lookup order for ``get("ENCRYPTION_KEY")``:

    1. ``ACCESS_ENCRYPTION_KEY``
    2. ``ENCRYPTION_KEY``
    3. the ``ENCRYPTION_KEY`` entry of the file named by ``secrets_file``
       (or ``ACCESS_SECRETS_FILE``)
    """

    def __init__(self, secrets_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ
        self.secrets_file = secrets_file or self.environ.get("ACCESS_SECRETS_FILE")

    def get(self, key: str) -> Optional[str]:
        """
        Get a secret by key.

        Args:
            key: Secret key

        Returns:
            Secret value, or None when no source defines it
        """
        for env_key in (f"ACCESS_{key.upper()}", key.upper()):
            secret = self.environ.get(env_key)
            if secret:
                return secret

        return self._read_file().get(key)

    def _read_file(self) -> Dict[str, str]:
        if not self.secrets_file or not os.path.exists(self.secrets_file):
            return {}

        with open(self.secrets_file, 'r') as f:
            secrets = json.load(f)

        if not isinstance(secrets, dict):
            logger.warning("Secrets file is not a JSON object", path=self.secrets_file)
            return {}
        return {str(k): str(v) for k, v in secrets.items()}

    def list_secrets(self) -> Dict[str, bool]:
        """
        List which secret names are available, never their values.

        Returns:
            Dictionary mapping secret keys to availability status
        """
        secrets = {}

        for key in self.environ.keys():
            if key.startswith("ACCESS_"):
                secrets[key[7:].upper()] = True

        for key in self._read_file().keys():
            secrets[key] = True

        return secrets


class StaticSecretStore:
    """Dictionary-backed store, used for tests and embedded setups."""

    def __init__(self, secrets: Optional[Mapping[str, str]] = None):
        self._secrets = dict(secrets or {})

    def get(self, key: str) -> Optional[str]:
        return self._secrets.get(key)
