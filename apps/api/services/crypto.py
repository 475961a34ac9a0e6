"""
Fernet encryption for OAuth tokens stored in platform_connections.
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings


_KDF_SALT = b"connection_hub_token_salt"


def _fernet_for(key: str) -> Fernet:
    # A 32-char key is used as-is; anything else is stretched with PBKDF2.
    if len(key) == 32:
        return Fernet(base64.urlsafe_b64encode(key.encode()))
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=100000,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))


def encrypt_token(token: Optional[str], key: Optional[str] = None) -> Optional[str]:
    """Encrypt a token for storage. ``None`` and empty strings pass through as ``None``."""
    if not token:
        return None
    fernet = _fernet_for(key or settings.ENCRYPTION_KEY)
    return fernet.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: Optional[str], key: Optional[str] = None) -> Optional[str]:
    """
    Decrypt a stored token.

    Raises:
        ValueError: the ciphertext was produced with a different key or is corrupt.
    """
    if not encrypted_token:
        return None
    fernet = _fernet_for(key or settings.ENCRYPTION_KEY)
    try:
        return fernet.decrypt(encrypted_token.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Stored token could not be decrypted with the configured ENCRYPTION_KEY") from exc
