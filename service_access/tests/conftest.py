"""
Shared fixtures for access service unit tests.
"""

import pytest

from service_access.app.auth.models import Principal, UsageCounters
from service_access.app.crypto.cipher import CredentialCipher
from service_access.app.vault.credential_vault import CredentialVault

TEST_KEY_HEX = bytes(range(32)).hex()


@pytest.fixture
def key() -> bytes:
    return bytes.fromhex(TEST_KEY_HEX)


@pytest.fixture
def cipher(key):
    """Create CredentialCipher instance."""
    return CredentialCipher(key)


@pytest.fixture
def vault(cipher):
    """Create CredentialVault instance."""
    return CredentialVault(cipher)


@pytest.fixture
def make_principal():
    """Factory for principals with given plan and counters."""
    def _make(plan="starter", integrations=0, syncs=0, user_id="user-1"):
        return Principal(
            user_id=user_id,
            plan=plan,
            usage=UsageCounters(integrations_count=integrations, syncs_this_month=syncs),
        )
    return _make


@pytest.fixture
def key_hex() -> str:
    return TEST_KEY_HEX
