"""
Secret generation and hashing for user tokens.

Secrets are looked up by their SHA-256 digest so the plain value never needs
to be compared in SQL.
"""

import hashlib
import secrets

from ..constants import Limits


def generate_secret(prefix: str = "sk-", num_bytes: int = Limits.MIN_SECRET_BYTES) -> str:
    """
    Generate a URL-safe bearer secret.

    Args:
        prefix: Literal prefix identifying the credential type
        num_bytes: Bytes of randomness (32 bytes = 256 bits)

    Returns:
        The new secret string
    """
    if num_bytes < Limits.MIN_SECRET_BYTES:
        num_bytes = Limits.MIN_SECRET_BYTES
    return f"{prefix}{secrets.token_urlsafe(num_bytes)}"


def hash_secret(secret: str) -> str:
    """Return the hex SHA-256 digest used as the lookup key."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()
