"""Encryption for stored shop credentials.

Passwords are opaque to shopwatch: they are stored encrypted with Fernet and
only decrypted to be forwarded to the upstream shop API.
"""

import base64
import logging
import os
from functools import lru_cache
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import String, TypeDecorator

from shopwatch import metrics

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_encryption_key() -> bytes:
    """
    Get encryption key from the ENCRYPTION_KEY environment variable.

    A temporary key is generated when the variable is unset; credentials
    written with it cannot be read back after a restart.

    Returns:
        Fernet key as bytes
    """
    key_str = os.getenv("ENCRYPTION_KEY")
    if not key_str:
        logger.warning("ENCRYPTION_KEY not set, generating temporary key (not secure for production)")
        return Fernet.generate_key()

    try:
        key_bytes = base64.urlsafe_b64decode(key_str)
        if len(key_bytes) == 32:
            return base64.urlsafe_b64encode(key_bytes)
    except (ValueError, TypeError):
        pass
    # Not a Fernet key; derive one from the raw string
    return base64.urlsafe_b64encode(key_str.encode().ljust(32)[:32])


class EncryptedString(TypeDecorator):
    """
    SQLAlchemy TypeDecorator for transparently encrypting/decrypting string columns.

    Usage:
        password: Mapped[str] = mapped_column(EncryptedString(512), nullable=False)
    """

    impl = String
    cache_ok = True

    def _get_fernet(self) -> Fernet:
        return Fernet(get_encryption_key())

    def process_bind_param(self, value: str | None, dialect: Any) -> str | None:
        """Encrypt value before storing in database."""
        if value is None:
            return None
        return self._get_fernet().encrypt(value.encode()).decode()

    def process_result_value(self, value: str | None, dialect: Any) -> str | None:
        """Decrypt value after reading from database."""
        if value is None:
            return None

        try:
            return self._get_fernet().decrypt(value.encode()).decode()
        except (InvalidToken, ValueError) as e:
            exception_type = type(e).__name__
            metrics.record_decryption_failure(exception_type)
            logger.error(
                f"Decryption failed: {exception_type} (value_length={len(value)}). "
                "This may indicate key rotation or data corruption."
            )
            # Unreadable credential behaves as a missing one
            return None
