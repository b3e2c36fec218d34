"""
Protection of Google OAuth tokens at rest.

Access and refresh tokens are Fernet-encrypted (cryptography) before they are
written to the users table and decrypted only right before a Google call.
Fernet output is randomized, so refresh tokens additionally get a SHA-256
digest that can be matched with a plain equality query.
"""
import hashlib
import os

from cryptography.fernet import Fernet

TOKEN_ENCRYPTION_KEY = os.environ.get("TOKEN_ENCRYPTION_KEY")
if not TOKEN_ENCRYPTION_KEY:
    raise RuntimeError("TOKEN_ENCRYPTION_KEY environment variable is required")
fernet = Fernet(TOKEN_ENCRYPTION_KEY.encode())


def encrypt(value: str | None) -> str | None:
    """Encrypt a token for storage; None stays None."""
    if value is None:
        return None
    return fernet.encrypt(value.encode()).decode()


def decrypt(value: str | None) -> str | None:
    """
    Decrypt a stored token. Returns None for a missing value.
    Raises InvalidToken if the ciphertext was made with another key.
    """
    if value is None:
        return None
    return fernet.decrypt(value.encode()).decode()


def token_digest(value: str) -> str:
    """Hex SHA-256 of a token, used as a lookup key."""
    return hashlib.sha256(value.encode()).hexdigest()

