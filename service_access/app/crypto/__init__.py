"""
Cryptographic primitives for the access service.

- cipher: AES-256-GCM credential cipher and key loading
- tokens: password hashing, API keys, webhook signatures, masking
"""

from .cipher import CredentialCipher, EncryptedBlob, load_encryption_key

__all__ = [
    "CredentialCipher",
    "EncryptedBlob",
    "load_encryption_key",
]
