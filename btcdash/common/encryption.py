"""Fernet encryption helpers for storing auth tokens at rest.

Uses Fernet symmetric encryption (AES-128-CBC + HMAC-SHA256).
The file-backed token store encrypts its payload before writing and
decrypts only in memory when a token is read.

Usage:
    from btcdash.common.encryption import encrypt_secret, decrypt_secret

    encrypted = encrypt_secret(json_payload)
    payload = decrypt_secret(encrypted)
"""

from __future__ import annotations

from cryptography.fernet import Fernet

from btcdash.common.config import get_settings
from btcdash.common.exceptions import ConfigurationError


def _get_fernet(key: str | None = None) -> Fernet:
    """Create a Fernet instance from an explicit key or the app encryption key."""
    key = key or get_settings().encryption_key
    if not key:
        raise ConfigurationError("ENCRYPTION_KEY is required for encrypted token storage")
    return Fernet(key.encode())


def encrypt_secret(plaintext: str, key: str | None = None) -> str:
    """Encrypt a secret string for storage on disk.

    Args:
        plaintext: The raw secret (token payload).
        key: Optional Fernet key; defaults to settings.encryption_key.

    Returns:
        Base64-encoded encrypted string.
    """
    f = _get_fernet(key)
    return f.encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str, key: str | None = None) -> str:
    """Decrypt a secret string read from disk.

    Args:
        ciphertext: The encrypted string.
        key: Optional Fernet key; defaults to settings.encryption_key.

    Returns:
        The original plaintext.

    Raises:
        cryptography.fernet.InvalidToken: If the ciphertext is invalid or
            was encrypted with a different key.
    """
    f = _get_fernet(key)
    return f.decrypt(ciphertext.encode()).decode()
