import os
import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class TokenDecryptionError(Exception):
    """Stored ciphertext could not be decrypted (key rotated or data corrupted)"""
    pass


class EncryptionService:
    """Application-level encryption for OAuth tokens stored in the database"""

    def __init__(self, secret_key: Optional[str] = None):
        secret_key = secret_key or os.environ.get('ENCRYPTION_SECRET_KEY')
        if not secret_key:
            # Development fallback; production deployments must set ENCRYPTION_SECRET_KEY
            secret_key = 'backlog-sync-dev-secret-change-in-production'

        salt = b'backlog_sync_token_salt_v1'
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))
        self.fernet = Fernet(key)

    def encrypt(self, plain_text: str) -> str:
        """Encrypt a string and return base64-encoded ciphertext"""
        encrypted = self.fernet.encrypt(plain_text.encode())
        return base64.urlsafe_b64encode(encrypted).decode()

    def decrypt(self, encrypted_text: str) -> str:
        """Decrypt base64-encoded ciphertext and return plain text"""
        try:
            encrypted = base64.urlsafe_b64decode(encrypted_text.encode())
            return self.fernet.decrypt(encrypted).decode()
        except (InvalidToken, ValueError) as e:
            raise TokenDecryptionError("Stored token could not be decrypted") from e


_encryption_service = None


def get_encryption_service() -> EncryptionService:
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service
