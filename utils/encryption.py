"""
Encryption utilities for secure token storage
Fernet encryption for channel access tokens kept in the credential store
"""

import base64
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken as FernetInvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from utils.logger import logger
from config.settings import settings


class TokenEncryption:
    """Handles encryption and decryption of provider access tokens"""

    def __init__(self, secret: Optional[str] = None):
        self.encryption_key = self._derive_key(secret or settings.ENCRYPTION_KEY or settings.JWT_SECRET)
        self.fernet = Fernet(self.encryption_key)

    def _derive_key(self, secret: str) -> bytes:
        """Derive a stable Fernet key from the configured secret"""
        if not secret:
            raise ValueError("ENCRYPTION_KEY or JWT_SECRET must be set for token encryption")

        salt = b'channel_token_salt_v1'  # Fixed salt so stored tokens stay readable
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(secret.encode()))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token

        Args:
            plaintext: Raw access token

        Returns:
            Fernet token as a string for database storage
        """
        return self.fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored token

        Raises:
            ValueError: the value was not produced with this key
        """
        try:
            return self.fernet.decrypt(ciphertext.encode()).decode()
        except FernetInvalidToken:
            logger.error("Failed to decrypt stored token - encryption key mismatch?")
            raise ValueError("Token decryption failed")


# Global instance
token_encryption = TokenEncryption()
