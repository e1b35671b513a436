"""
Encryption at rest for the aggregator password and cached bearer token.
"""
import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings

logger = logging.getLogger(__name__)


def get_encryption_key() -> bytes:
    """Derive a Fernet key from ENCRYPTION_KEY"""
    key_str = settings.ENCRYPTION_KEY
    # Fernet needs 32 raw bytes, urlsafe-base64 encoded
    key_bytes = key_str.encode()[:32].ljust(32, b'0')
    return base64.urlsafe_b64encode(key_bytes)


def encrypt_token(token: str) -> str:
    """Encrypt a secret"""
    f = Fernet(get_encryption_key())
    return f.encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt a secret"""
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


def decrypt_optional(encrypted: Optional[str]) -> Optional[str]:
    """Decrypt a stored value; None if absent or encrypted under a different key."""
    if not encrypted:
        return None
    try:
        return decrypt_token(encrypted)
    except InvalidToken:
        logger.warning("Stored secret could not be decrypted (ENCRYPTION_KEY changed?)")
        return None
