"""
Encryption for upstream provider tokens kept in session records.

Uses Fernet symmetric encryption (AES-128-CBC with HMAC).
The raw provider token never leaves the server; it is encrypted before
it is written to the state store and decrypted only on the server side.

Usage:
    from broker.core.encryption import get_encryption

    encryption = get_encryption()
    encrypted = encryption.encrypt("gho_provider_token")
    decrypted = encryption.decrypt(encrypted)
"""

from functools import lru_cache

from cryptography.fernet import Fernet

from broker.core.config import settings


class TokenEncryption:
    """
    Encrypt and decrypt provider tokens for storage in JSON records.

    Ciphertext is returned as text because store values are JSON documents.
    """

    def __init__(self, key: str | None = None):
        """
        Initialize encryption with a Fernet key.

        Args:
            key: Base64-encoded 32-byte key. If not provided,
                 reads from TOKEN_ENCRYPTION_KEY setting.

        Raises:
            ValueError: If no key is provided or found in settings.
        """
        if key is None:
            key = settings.TOKEN_ENCRYPTION_KEY

        if not key:
            raise ValueError(
                "TOKEN_ENCRYPTION_KEY environment variable is required. "
                "Generate one with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )

        self.fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token string.

        Args:
            plaintext: The token to encrypt.

        Returns:
            URL-safe ciphertext.
        """
        return self.fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt an encrypted token.

        Raises:
            cryptography.fernet.InvalidToken: If data is corrupted or tampered.
        """
        return self.fernet.decrypt(ciphertext.encode()).decode()


@lru_cache(maxsize=1)
def get_encryption() -> TokenEncryption:
    """
    Get the singleton TokenEncryption instance.

    The instance is cached for the lifetime of the application.
    """
    return TokenEncryption()
