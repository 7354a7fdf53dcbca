"""AES-GCM field encryption for @encrypted fields.

Stored form: "enc:v1:" + urlsafe base64 of (12-byte nonce || ciphertext+tag).
The "<Model>.<field>" name is bound as associated data, so a ciphertext copied
into another column does not decrypt.
"""
from __future__ import annotations

import base64
import logging
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from schemaguard.core.errors import CryptoError

_log = logging.getLogger("schemaguard.behaviors")

PREFIX = "enc:v1:"
_NONCE_BYTES = 12


def generate_key() -> str:
    """New 256-bit key in the form SCHEMAGUARD_ENCRYPTION_KEY expects."""
    return base64.urlsafe_b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def is_encrypted(value: object) -> bool:
    return isinstance(value, str) and value.startswith(PREFIX)


class FieldCipher:
    def __init__(self, key: Optional[str]):
        self._aead: Optional[AESGCM] = None
        if key:
            try:
                raw = base64.urlsafe_b64decode(key.encode("ascii"))
                self._aead = AESGCM(raw)
            except (ValueError, TypeError) as e:
                raise CryptoError(f"Invalid encryption key: {e}") from e

    def _cipher(self, model: str, field: str) -> AESGCM:
        if self._aead is None:
            raise CryptoError("No encryption key configured for @encrypted fields", model=model, field=field)
        return self._aead

    def encrypt(self, value: str, *, model: str, field: str) -> str:
        if is_encrypted(value):
            return value
        nonce = secrets.token_bytes(_NONCE_BYTES)
        aad = f"{model}.{field}".encode("utf-8")
        sealed = self._cipher(model, field).encrypt(nonce, value.encode("utf-8"), aad)
        return PREFIX + base64.urlsafe_b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, value: str, *, model: str, field: str) -> str:
        if not is_encrypted(value):
            return value
        try:
            blob = base64.urlsafe_b64decode(value[len(PREFIX):].encode("ascii"))
            aad = f"{model}.{field}".encode("utf-8")
            plain = self._cipher(model, field).decrypt(blob[:_NONCE_BYTES], blob[_NONCE_BYTES:], aad)
        except (InvalidTag, ValueError) as e:
            _log.warning("Decryption failed for %s.%s", model, field)
            raise CryptoError("Stored value does not decrypt", model=model, field=field) from e
        return plain.decode("utf-8")
