"""
Conversation encryption at rest.
Session payloads hold customer messages; when a key is configured they are
stored as Fernet tokens instead of plain JSON.

Version: 1.0.0
"""
import base64
import logging
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# Fixed salt keeps passphrase-derived keys stable across instances
KEY_DERIVATION_SALT = b"handoff_core_session_salt_v1"


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""
    pass


class PayloadCipher:
    """
    Symmetric encryption of text payloads using Fernet.

    Accepts either a urlsafe base64 Fernet key or an arbitrary passphrase,
    which is stretched with PBKDF2-SHA256.
    """

    def __init__(self, encryption_key: Union[str, bytes]):
        if not encryption_key:
            raise EncryptionError("Encryption key must not be empty")

        key_bytes = encryption_key.encode() if isinstance(encryption_key, str) else encryption_key

        try:
            self.cipher = Fernet(key_bytes)
        except ValueError:
            logger.debug("Deriving encryption key from passphrase")
            self.cipher = Fernet(self._derive_key(key_bytes))

    @staticmethod
    def _derive_key(passphrase: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KEY_DERIVATION_SALT,
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(passphrase))

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode()

    def encrypt_string(self, data: str) -> str:
        """
        Encrypt text.

        Returns:
            Fernet token as text

        Raises:
            EncryptionError: If encryption fails
        """
        try:
            return self.cipher.encrypt(data.encode('utf-8')).decode('ascii')
        except Exception as e:
            logger.error(f"Encryption failed: {e}")
            raise EncryptionError(f"Encryption failed: {e}")

    def decrypt_string(self, token: str) -> str:
        """
        Decrypt a token produced by :meth:`encrypt_string`.

        Raises:
            EncryptionError: If the token is invalid or the key is wrong
        """
        try:
            return self.cipher.decrypt(token.encode('ascii')).decode('utf-8')
        except InvalidToken:
            logger.error("Decryption failed: Invalid token (wrong key or corrupted data)")
            raise EncryptionError("Decryption failed: Invalid token")


def create_cipher(encryption_key: Optional[str]) -> Optional[PayloadCipher]:
    """Build a cipher when a key is configured, else None."""
    if not encryption_key:
        return None
    return PayloadCipher(encryption_key)


__all__ = ['PayloadCipher', 'EncryptionError', 'create_cipher']
