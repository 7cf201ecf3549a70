"""Encryption of stored credentials (OAuth tokens, PATs, client secrets)."""
import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SecretBox:
    """Symmetric Fernet encryption for secrets persisted in the database."""

    def __init__(self, key: str):
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @classmethod
    def from_secret(cls, secret: str) -> "SecretBox":
        """Derive a Fernet key from an arbitrary application secret."""
        digest = hashlib.sha256(secret.encode()).digest()
        return cls(base64.urlsafe_b64encode(digest).decode())

    def encrypt(self, plain: Optional[str]) -> Optional[str]:
        if plain is None or plain == "":
            return None
        return self._fernet.encrypt(plain.encode()).decode()

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("Stored secret could not be decrypted (key rotated?)")
            return None


_box: Optional[SecretBox] = None


def get_secret_box() -> SecretBox:
    """Get or create the process-wide SecretBox."""
    global _box
    if _box is None:
        from scm_publisher.config import settings

        if settings.SCM_ENCRYPTION_KEY:
            _box = SecretBox(settings.SCM_ENCRYPTION_KEY)
        else:
            logger.warning("SCM_ENCRYPTION_KEY not set, deriving key from SECRET_KEY")
            _box = SecretBox.from_secret(settings.SECRET_KEY)
    return _box


def encrypt(plain: Optional[str]) -> Optional[str]:
    return get_secret_box().encrypt(plain)


def decrypt(token: Optional[str]) -> Optional[str]:
    return get_secret_box().decrypt(token)
