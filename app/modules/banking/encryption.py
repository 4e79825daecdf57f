"""
Encryption of the stored bank secret.

Fernet (AES-128-CBC + HMAC-SHA256) from `cryptography`; a wrong key or a
tampered token fails authentication and surfaces as SecretDecryptionError.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import config
from app.core.exceptions import SecretDecryptionError

logger = logging.getLogger(__name__)


def generate_key() -> str:
    return Fernet.generate_key().decode()


class SecretCipher:
    def __init__(self, key: Optional[str] = None):
        key = key if key is not None else config.banking_encryption_key
        if not key:
            raise SecretDecryptionError("BANKING_ENCRYPTION_KEY is not set")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise SecretDecryptionError(f"BANKING_ENCRYPTION_KEY is not a valid Fernet key: {e}")

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as e:
            logger.error("Failed to decrypt banking secret (wrong key or tampered data)")
            raise SecretDecryptionError("Stored banking secret cannot be decrypted") from e
