"""
Password hashing, API key generation, webhook signatures and masking.
"""

import hashlib
import hmac
import secrets
from typing import Union

PBKDF2_ITERATIONS = 100_000
PBKDF2_HASH_LENGTH = 64
SALT_LENGTH = 16


def hash_password(password: str) -> str:
    """Hash a password as ``salt:hash`` (hex) using PBKDF2-HMAC-SHA256."""
    salt = secrets.token_hex(SALT_LENGTH)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS, PBKDF2_HASH_LENGTH
    )
    return f"{salt}:{digest.hex()}"


def verify_password(password: str, hashed_password: str) -> bool:
    """Check a password against ``hash_password`` output."""
    salt, sep, expected = hashed_password.partition(":")
    if not sep or not salt or not expected:
        return False

    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS, PBKDF2_HASH_LENGTH
    )
    return hmac.compare_digest(digest.hex(), expected)


def generate_api_key(prefix: str = "ihub") -> str:
    """Generate an API key such as ``ihub_<64 hex chars>``."""
    return f"{prefix}_{secrets.token_hex(32)}"


def generate_verification_token() -> str:
    return secrets.token_hex(32)


def sign_webhook_payload(payload: Union[str, bytes], secret: str) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: Union[str, bytes], signature: str, secret: str) -> bool:
    """Verify an HMAC-SHA256 hex signature in constant time."""
    if not signature or not secret:
        return False
    expected = sign_webhook_payload(payload, secret)
    return hmac.compare_digest(signature.strip().lower().encode("ascii", "ignore"), expected.encode("ascii"))


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """Keep the first and last ``visible_chars`` characters, star the rest."""
    if len(data) <= visible_chars * 2:
        return "*" * len(data)

    start = data[:visible_chars]
    end = data[-visible_chars:]
    return f"{start}{'*' * (len(data) - visible_chars * 2)}{end}"


def fingerprint(data: Union[str, bytes]) -> str:
    """Short SHA-256 digest for correlating a sealed token in logs."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()[:12]
