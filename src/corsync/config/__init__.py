"""
Configuration management for corsync.

This module handles loading, validating, and saving configuration settings,
as well as encryption of stored platform API keys.
"""

from corsync.config.credentials import (
    CredentialCipher,
    CredentialError,
    DecryptionError,
    EncryptionKeyError,
    generate_encryption_key,
    key_hint,
    redact_secrets,
)
from corsync.config.settings import (
    ConfigurationError,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    # Settings
    "Settings",
    "load_config",
    "save_config",
    "ConfigurationError",
    # Credentials
    "CredentialCipher",
    "CredentialError",
    "EncryptionKeyError",
    "DecryptionError",
    "generate_encryption_key",
    "key_hint",
    "redact_secrets",
]
