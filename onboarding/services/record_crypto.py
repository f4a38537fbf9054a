"""At-rest sealing for onboarding documents and key material.

A sealed value is ``recenc:v1:`` followed by urlsafe base64 of
``nonce | ciphertext | tag``. Encryption and authentication use separate
subkeys derived from ``DATA_ENCRYPTION_SECRET``; the tag also covers the
prefix so a token cannot be replayed under another format version.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from typing import Any

from onboarding.core.config import settings

_PREFIX = "recenc:v1:"
_NONCE_BYTES = 16
_TAG_BYTES = 32
_KDF_ROUNDS = 120_000


class RecordCryptoError(ValueError):
    """A sealed value cannot be opened with the configured secret."""


def _subkey(label: bytes) -> bytes:
    secret = str(settings.DATA_ENCRYPTION_SECRET or "").strip()
    if not secret:
        raise RecordCryptoError("DATA_ENCRYPTION_SECRET must be set to store onboarding records")
    return hmac.new(secret.encode("utf-8"), b"onboarding-record/" + label, hashlib.sha256).digest()


def _keystream(nonce: bytes, length: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", _subkey(b"enc"), nonce, _KDF_ROUNDS, dklen=length)


def _tag(nonce: bytes, cipher: bytes) -> bytes:
    return hmac.new(_subkey(b"mac"), _PREFIX.encode("ascii") + nonce + cipher, hashlib.sha256).digest()


def _seal(plain: bytes) -> bytes:
    nonce = secrets.token_bytes(_NONCE_BYTES)
    cipher = bytes(p ^ k for p, k in zip(plain, _keystream(nonce, len(plain))))
    return nonce + cipher + _tag(nonce, cipher)


def _open(blob: bytes) -> bytes:
    if len(blob) < _NONCE_BYTES + _TAG_BYTES:
        raise RecordCryptoError("sealed record is truncated")
    nonce = blob[:_NONCE_BYTES]
    cipher = blob[_NONCE_BYTES:-_TAG_BYTES]
    if not hmac.compare_digest(blob[-_TAG_BYTES:], _tag(nonce, cipher)):
        raise RecordCryptoError("sealed record does not match its tag; wrong secret or tampered data")
    return bytes(c ^ k for c, k in zip(cipher, _keystream(nonce, len(cipher))))


def is_encrypted(value: str | None) -> bool:
    return str(value or "").strip().startswith(_PREFIX)


def encrypt_text(value: str | None) -> str | None:
    # Empty and already sealed values pass through unchanged.
    if value is None:
        return None
    text = str(value)
    if not text or is_encrypted(text):
        return text
    return _PREFIX + base64.urlsafe_b64encode(_seal(text.encode("utf-8"))).decode("ascii")


def decrypt_text(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not is_encrypted(text):
        # Rows written before sealing was introduced hold plain text.
        return str(value)
    try:
        blob = base64.urlsafe_b64decode(text[len(_PREFIX) :].encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise RecordCryptoError("sealed record is not valid base64") from exc
    try:
        return _open(blob).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise RecordCryptoError("sealed record did not decode to text") from exc


def encrypt_document(document: dict[str, Any] | None) -> str | None:
    if document is None:
        return None
    return encrypt_text(json.dumps(document, ensure_ascii=False, sort_keys=True))


def decrypt_document(token: str | None) -> dict[str, Any] | None:
    raw = decrypt_text(token)
    if not raw:
        return None
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise RecordCryptoError("sealed record is not a JSON object")
    return data
