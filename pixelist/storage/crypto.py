from __future__ import annotations

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from pixelist.logging import get_logger

logger = get_logger(__name__)


def _derive_cipher_key(key_material: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())


class SecretCipher:
    """Fernet wrapper used by the stores to keep TOTP secrets encrypted at rest."""

    def __init__(self, key_material: str) -> None:
        if not key_material:
            raise ValueError("key material is required for the secret cipher")
        self._fernet = Fernet(_derive_cipher_key(key_material))

    def encrypt(self, secret: Optional[str]) -> Optional[str]:
        if not secret:
            return None
        return self._fernet.encrypt(secret.encode()).decode()

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        """Decrypt a stored secret.

        A value that fails authentication is treated as absent: the user then
        has no usable second factor and verification fails closed.
        """
        if not token:
            return None
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.warning("two_factor_secret_decrypt_failed")
            return None
