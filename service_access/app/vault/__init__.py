"""
Credential vault package.

Serializes connector credentials, encrypts them through the credential
cipher and packs the result into a single sealed token for storage.
"""

from .credential_vault import CredentialVault
from .schemas import ConnectorCredentials, parse_connector_credentials

__all__ = [
    "ConnectorCredentials",
    "CredentialVault",
    "parse_connector_credentials",
]
