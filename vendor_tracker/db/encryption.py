"""At-rest encryption for the stored LWA refresh token.

The refresh token grants API access to the vendor account indefinitely, so
it never hits the database in plaintext. ENCRYPTION_KEY may hold several
comma-separated keys: the first encrypts, all of them decrypt, which lets a
key be rotated without re-authorizing.
"""

import base64
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from sqlalchemy import String, TypeDecorator

from vendor_tracker import metrics
from vendor_tracker.config import settings

logger = logging.getLogger(__name__)


def normalize_key(key_str: str) -> bytes:
    """Accept a Fernet key as-is; stretch a passphrase to 32 bytes."""
    try:
        raw = base64.urlsafe_b64decode(key_str)
        if len(raw) == 32:
            return base64.urlsafe_b64encode(raw)
    except (ValueError, TypeError):
        pass
    return base64.urlsafe_b64encode(key_str.encode().ljust(32)[:32])


def build_cipher(keys: str | None = None) -> MultiFernet:
    """
    Cipher for the configured key list.

    With no key configured a throwaway key is generated; tokens written with
    it cannot be read after the process exits.
    """
    keys = keys if keys is not None else settings.encryption_key
    key_list = [k.strip() for k in keys.split(",") if k.strip()]
    if not key_list:
        logger.warning("ENCRYPTION_KEY not set, using a temporary key (stored tokens will not survive restart)")
        return MultiFernet([Fernet(Fernet.generate_key())])
    return MultiFernet([Fernet(normalize_key(k)) for k in key_list])


class EncryptedString(TypeDecorator):
    """String column stored Fernet-encrypted; unreadable values load as None."""

    impl = String
    cache_ok = True

    def __init__(self, length: int = 1024, *args: Any, **kwargs: Any):
        super().__init__(length, *args, **kwargs)
        self._cipher: MultiFernet | None = None

    @property
    def cipher(self) -> MultiFernet:
        if self._cipher is None:
            self._cipher = build_cipher()
        return self._cipher

    def process_bind_param(self, value: str | None, dialect: Any) -> str | None:
        if value is None:
            return None
        return self.cipher.encrypt(value.encode()).decode()

    def process_result_value(self, value: str | None, dialect: Any) -> str | None:
        # A None refresh token surfaces as AuthRefreshError in the token manager
        if value is None:
            return None
        try:
            return self.cipher.decrypt(value.encode()).decode()
        except (InvalidToken, ValueError) as e:
            metrics.record_decryption_failure(type(e).__name__)
            logger.error(
                f"Could not decrypt stored value ({type(e).__name__}, length {len(value)}); "
                "was ENCRYPTION_KEY rotated without keeping the old key?"
            )
            return None
