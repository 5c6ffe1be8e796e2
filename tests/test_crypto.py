from __future__ import annotations

import base64

import pytest

from vello.crypto import decrypt, encrypt, generate_key
from vello.errors import EncryptionError


def test_round_trip_uses_fresh_tokens(monkeypatch) -> None:
    monkeypatch.setenv("VELLO_ENCRYPTION_KEY", generate_key())
    first, second = encrypt("app-password"), encrypt("app-password")
    assert first != second
    assert decrypt(first) == "app-password"


def test_generated_key_is_32_bytes() -> None:
    assert len(base64.b64decode(generate_key())) == 32


def test_wrong_key_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("VELLO_ENCRYPTION_KEY", generate_key())
    token = encrypt("secret")
    monkeypatch.setenv("VELLO_ENCRYPTION_KEY", generate_key())
    with pytest.raises(EncryptionError):
        decrypt(token)


def test_key_validation(monkeypatch) -> None:
    monkeypatch.delenv("VELLO_ENCRYPTION_KEY", raising=False)
    with pytest.raises(EncryptionError):
        encrypt("secret")
    monkeypatch.setenv("VELLO_ENCRYPTION_KEY", base64.b64encode(b"short").decode("ascii"))
    with pytest.raises(EncryptionError):
        encrypt("secret")
