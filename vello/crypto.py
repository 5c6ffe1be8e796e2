from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.fernet import Fernet, InvalidToken

from . import config
from .errors import EncryptionError

logger = logging.getLogger(__name__)


def generate_key() -> str:
    """A fresh base64 key suitable for VELLO_ENCRYPTION_KEY."""
    return base64.b64encode(os.urandom(32)).decode("ascii")


def _cipher() -> Fernet:
    key = os.getenv(config.ENCRYPTION_KEY_ENV)
    if not key:
        raise EncryptionError(f"{config.ENCRYPTION_KEY_ENV} environment variable is not set")
    try:
        raw = base64.b64decode(key.encode("ascii"), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise EncryptionError("Encryption key is not valid base64") from exc
    if len(raw) != 32:
        raise EncryptionError("Encryption key must decode to 32 bytes")
    return Fernet(base64.urlsafe_b64encode(raw))


def encrypt(text: str) -> str:
    return _cipher().encrypt(text.encode("utf-8")).decode("ascii")


def decrypt(token: str) -> str:
    cipher = _cipher()
    try:
        return cipher.decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, UnicodeError) as exc:
        logger.error("Decryption failed: %s", type(exc).__name__)
        raise EncryptionError("Failed to decrypt data") from exc
