"""
Encryption of access tokens at rest and secret redaction in logs.

CRITICAL SECURITY REQUIREMENTS:
- NEVER store access tokens in plaintext in the session store
- NEVER log session tokens, access tokens or the client secret
- Any log field whose name contains token/secret/key is redacted

Access tokens are encrypted with Fernet. The Fernet key is derived from the
ENCRYPTION_KEY passphrase with PBKDF2, or passed explicitly.

Usage:
    from shopify_auth.platform.secrets import TokenCipher, SecretRedactingFilter

    cipher = TokenCipher.from_env()
    stored = cipher.encrypt(session.access_token)

    logging.getLogger().addFilter(SecretRedactingFilter())
"""

import base64
import hashlib
import logging
import os
import re
from typing import Any, Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from shopify_auth.errors import ConfigError, ShopifyAuthError

logger = logging.getLogger(__name__)

# Patterns for detecting secrets in log field names
SECRET_PATTERNS = [
    re.compile(r"(access[_-]?token)", re.IGNORECASE),
    re.compile(r"(session[_-]?token)", re.IGNORECASE),
    re.compile(r"(subject[_-]?token)", re.IGNORECASE),
    re.compile(r"(id[_-]?token)", re.IGNORECASE),
    re.compile(r"(client[_-]?secret)", re.IGNORECASE),
    re.compile(r"(api[_-]?secret)", re.IGNORECASE),
    re.compile(r"(encryption[_-]?key)", re.IGNORECASE),
    re.compile(r"(authorization)", re.IGNORECASE),
    re.compile(r"(password)", re.IGNORECASE),
]

# Secret values that may appear inside free-form messages
SECRET_VALUE_PATTERNS = [
    re.compile(r"(Bearer\s+[a-zA-Z0-9._-]+)"),
    re.compile(r"(shpat_[a-fA-F0-9]{32,})"),  # Shopify access tokens
    re.compile(r"(shpua_[a-fA-F0-9]{32,})"),  # Shopify online access tokens
    re.compile(r"(shpss_[a-zA-Z0-9]{24,})"),  # Shopify shared secrets
    re.compile(r"(eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]*)"),  # JWTs
]

REDACTED_VALUE = "[REDACTED]"

_KDF_SALT = b"shopify-auth-session-tokens"
_KDF_ITERATIONS = 100000


class EncryptionError(ShopifyAuthError):
    """Raised when encryption/decryption operations fail."""
    pass


def derive_fernet_key(passphrase: str) -> bytes:
    """Derive a Fernet key from a passphrase using PBKDF2-SHA256."""
    derived_key = hashlib.pbkdf2_hmac(
        "sha256",
        passphrase.encode(),
        _KDF_SALT,
        _KDF_ITERATIONS,
        dklen=32,  # Fernet requires 32 bytes
    )
    return base64.urlsafe_b64encode(derived_key)


class TokenCipher:
    """Fernet encryption for access tokens stored in the session store."""

    def __init__(self, key: Union[str, bytes]):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigError(f"Invalid Fernet key: {e}")

    @classmethod
    def from_passphrase(cls, passphrase: str) -> "TokenCipher":
        if not passphrase:
            raise ConfigError("Encryption passphrase cannot be empty")
        return cls(derive_fernet_key(passphrase))

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "TokenCipher":
        """
        Build a cipher from the ENCRYPTION_KEY environment variable.

        Raises:
            ConfigError: If ENCRYPTION_KEY is not set
        """
        env = os.environ if environ is None else environ
        passphrase = env.get("ENCRYPTION_KEY")
        if not passphrase:
            raise ConfigError("ENCRYPTION_KEY is required to store sessions")
        logger.info("Session token encryption initialized")
        return cls.from_passphrase(passphrase)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext string.

        Raises:
            ValueError: If plaintext is empty
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored string.

        Raises:
            EncryptionError: If the ciphertext is invalid or the key is wrong
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty string")
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            raise EncryptionError("Invalid ciphertext or wrong encryption key")


def is_secret_key(key: str) -> bool:
    """True if a field name suggests it holds a secret."""
    return any(pattern.search(key) for pattern in SECRET_PATTERNS)


def redact_value(value: Any) -> Any:
    """Redact secret-looking substrings from a string value."""
    if not isinstance(value, str):
        return value

    result = value
    for pattern in SECRET_VALUE_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)

    return result


def redact_secrets(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact secrets from a data structure.

    Use this before logging any data that might contain secrets.

    Usage:
        safe_data = redact_secrets({"access_token": "shpat_...", "shop": "x"})
    """
    # Prevent infinite recursion
    if _depth > 10:
        return data

    if isinstance(data, dict):
        return {
            key: REDACTED_VALUE if is_secret_key(str(key)) else redact_secrets(value, _depth + 1)
            for key, value in data.items()
        }

    if isinstance(data, list):
        return [redact_secrets(item, _depth + 1) for item in data]

    return redact_value(data)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts secrets from log records.

    Usage:
        handler.addFilter(SecretRedactingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_secrets(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(redact_value(arg) for arg in record.args)

        # Redact extra fields
        for key in list(record.__dict__.keys()):
            if is_secret_key(key):
                setattr(record, key, REDACTED_VALUE)

        return True
