"""
Encryption utilities for stored token secrets.

Handles cross-database encryption (PostgreSQL pgcrypto, SQLite plaintext for testing).
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session


def encrypt_value(session: Session, value: str, key: str) -> bytes:
    """
    Encrypt a value using database-specific encryption.

    Args:
        session: Database session
        value: Value to encrypt
        key: Symmetric encryption key

    Returns:
        Encrypted bytes
    """
    if session.bind.dialect.name == "postgresql":
        return session.execute(
            text("SELECT pgp_sym_encrypt(:data, :key)"), {"data": value, "key": key}
        ).scalar()
    # SQLite for testing - return as-is
    return value.encode() if isinstance(value, str) else value


def decrypt_value(session: Session, encrypted_value, key: str) -> Optional[str]:
    """
    Decrypt a value using database-specific decryption.

    Args:
        session: Database session
        encrypted_value: Encrypted bytes (plain text on SQLite)
        key: Symmetric encryption key

    Returns:
        Decrypted string or None
    """
    if not encrypted_value:
        return None

    if session.bind.dialect.name == "postgresql":
        return session.execute(
            text("SELECT pgp_sym_decrypt(:data, :key)"),
            {"data": encrypted_value, "key": key},
        ).scalar()
    if isinstance(encrypted_value, (bytes, memoryview)):
        return bytes(encrypted_value).decode()
    return encrypted_value


def encrypt_secret(session: Session, secret: str, key: str) -> bytes:
    """Encrypt a user token secret for storage."""
    return encrypt_value(session, secret, f"{key}_user_token")


def decrypt_secret(session: Session, encrypted, key: str) -> Optional[str]:
    """Decrypt a stored user token secret."""
    return decrypt_value(session, encrypted, f"{key}_user_token")
