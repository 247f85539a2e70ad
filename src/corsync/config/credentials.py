"""
Credential encryption for stored platform API keys.

Each tenant's API key is stored encrypted at rest with AES-256-GCM using a
single installation-wide key taken from configuration (64 hex characters,
i.e. 32 bytes). The stored token has the form:

    hex(nonce):hex(auth_tag):hex(ciphertext)

with a fresh random 16-byte nonce per encryption and a 16-byte tag.

Security Design:
    - Authenticated encryption: tampered or truncated tokens fail to decrypt
    - Decryption never returns partial or garbage plaintext
    - Plaintext and key material are never logged
    - API keys are displayed only as a hint ("****" + last four characters)

Threat Model:
    - Protects against: database dumps, backups, casual inspection of the
      sync store
    - Does NOT protect against: compromise of the encryption key or of the
      running process
"""

import re
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_LENGTH = 32  # 256 bits
NONCE_LENGTH = 16
TAG_LENGTH = 16

REDACTED = "[API_KEY]"

# Platform API keys are issued with this prefix
API_KEY_PATTERN = re.compile(r"ask_[^\s\"']+")


class CredentialError(Exception):
    """Base exception for credential-related errors."""

    pass


class EncryptionKeyError(CredentialError):
    """Raised when the configured encryption key is missing or malformed."""

    pass


class DecryptionError(CredentialError):
    """Raised when a stored token cannot be decrypted."""

    pass


def generate_encryption_key() -> str:
    """Return a new random encryption key as 64 hex characters."""
    return secrets.token_hex(KEY_LENGTH)


def key_hint(api_key: str) -> str:
    """Return a display-safe hint for an API key."""
    return f"****{api_key[-4:]}" if api_key else "****"


def redact_secrets(text: str | None, secret: str | None = None) -> str:
    """
    Remove API key material from a message before it is logged or stored.

    Args:
        text: Message that may contain a key.
        secret: A specific key value to remove as well.

    Returns:
        The message with keys replaced by "[API_KEY]".
    """
    if not text:
        return ""
    if secret:
        text = text.replace(secret, REDACTED)
    return API_KEY_PATTERN.sub(REDACTED, text)


class CredentialCipher:
    """
    AES-256-GCM cipher for API keys.

    Usage:
        cipher = CredentialCipher(settings.security.encryption_key)
        token = cipher.encrypt("ask_live_...")
        api_key = cipher.decrypt(token)
    """

    def __init__(self, encryption_key: str | None) -> None:
        """
        Args:
            encryption_key: 64 hex characters.

        Raises:
            EncryptionKeyError: If the key is missing or not 32 bytes of hex.
        """
        if not encryption_key:
            raise EncryptionKeyError(
                "Encryption key is not configured. "
                "Set CORSYNC_ENCRYPTION_KEY or run 'corsync keygen'."
            )
        try:
            key = bytes.fromhex(encryption_key.strip())
        except ValueError as e:
            raise EncryptionKeyError("Encryption key must be hex encoded") from e
        if len(key) != KEY_LENGTH:
            raise EncryptionKeyError(
                f"Encryption key must be {KEY_LENGTH * 2} hex characters "
                f"({KEY_LENGTH} bytes)"
            )
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext value.

        Raises:
            CredentialError: If the plaintext is empty.
        """
        if not plaintext:
            raise CredentialError("Cannot encrypt an empty value")

        nonce = secrets.token_bytes(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt().

        Raises:
            DecryptionError: If the token is malformed or fails verification.
        """
        if not token:
            raise DecryptionError("Empty encrypted value")

        parts = token.split(":")
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted value format")

        try:
            nonce, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError as e:
            raise DecryptionError("Invalid encrypted value encoding") from e

        if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH or not ciphertext:
            raise DecryptionError("Invalid encrypted value format")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Encrypted value failed verification") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not valid text") from e
