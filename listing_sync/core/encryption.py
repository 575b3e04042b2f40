# listing_sync/core/encryption.py
"""
Encryption of marketplace OAuth tokens at rest.

Tokens are stored as Fernet tokens (AES-128-CBC + HMAC-SHA256, timestamped).
TOKEN_ENCRYPTION_KEYS holds one or more keys, newest first: the first key
encrypts, every key is tried on decrypt, so keys can be rotated without a
data migration. `rotate_token` re-encrypts a value under the newest key.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from listing_sync.core.config import Settings, get_settings
from listing_sync.core.exceptions import TokenEncryptionError

logger = logging.getLogger(__name__)


def get_token_cipher(settings: Optional[Settings] = None) -> MultiFernet:
    """
    Raises:
        TokenEncryptionError: no key configured, or a key is not a valid Fernet key
    """
    settings = settings or get_settings()
    keys = [key.strip() for key in settings.TOKEN_ENCRYPTION_KEYS.split(",") if key.strip()]
    if not keys:
        raise TokenEncryptionError("TOKEN_ENCRYPTION_KEYS is not configured")
    try:
        return MultiFernet([Fernet(key.encode()) for key in keys])
    except ValueError as e:
        raise TokenEncryptionError(f"Invalid token encryption key: {str(e)}")


def encrypt_token(value: Optional[str], settings: Optional[Settings] = None) -> Optional[str]:
    if value is None:
        return None
    return get_token_cipher(settings).encrypt(value.encode()).decode()


def decrypt_token(value: Optional[str], settings: Optional[Settings] = None) -> Optional[str]:
    """
    Raises:
        TokenEncryptionError: the value was not encrypted with any configured key
    """
    if value is None:
        return None
    try:
        return get_token_cipher(settings).decrypt(value.encode()).decode()
    except InvalidToken:
        logger.error("Stored token could not be decrypted with any configured key")
        raise TokenEncryptionError("Stored token could not be decrypted with any configured key")


def rotate_token(value: Optional[str], settings: Optional[Settings] = None) -> Optional[str]:
    if value is None:
        return None
    try:
        return get_token_cipher(settings).rotate(value.encode()).decode()
    except InvalidToken:
        raise TokenEncryptionError("Stored token could not be decrypted with any configured key")
