# calendar_engine/utils/encryption.py
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken


# Generate a key once and store it in CALENDAR_ENCRYPTION_KEY
# key = Fernet.generate_key().decode()


class TokenCipher:
    """Fernet wrapper for OAuth tokens at rest"""

    def __init__(self, key: str):
        if not key:
            raise ValueError("CALENDAR_ENCRYPTION_KEY is not set")
        self.fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, token: Optional[str]) -> Optional[bytes]:
        """Encrypt a token string"""
        if not token:
            return None
        return self.fernet.encrypt(token.encode())

    def decrypt(self, encrypted_token: Optional[bytes]) -> Optional[str]:
        """Decrypt a token"""
        if not encrypted_token:
            return None
        try:
            return self.fernet.decrypt(encrypted_token).decode()
        except InvalidToken:
            raise ValueError("Stored calendar token could not be decrypted; was the key rotated?")
