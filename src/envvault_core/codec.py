"""Authenticated symmetric encryption for env file contents.

Ciphertexts are self-describing strings::

    ev1:<urlsafe base64 of salt(16) || nonce(12) || ciphertext || tag(16)>

Each call to :func:`encrypt` draws a fresh salt and nonce. The AES-256-GCM key
is derived from the shared key string with HKDF-SHA256 over that salt, so the
same plaintext never produces the same ciphertext twice.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from envvault_core.errors import DecryptionFailed, ValidationError

CIPHERTEXT_PREFIX = "ev1:"
SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
_HKDF_INFO = b"envvault env file v1"


def _derive_key(key: str, salt: bytes) -> bytes:
    if not isinstance(key, str) or not key:
        raise ValidationError("Encryption key must be a non-empty string.")
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        info=_HKDF_INFO,
    ).derive(key.encode("utf-8"))


def encrypt(plaintext: str, key: str) -> str:
    if not isinstance(plaintext, str):
        raise ValidationError("Plaintext must be a string.")
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(_derive_key(key, salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
    encoded = base64.urlsafe_b64encode(salt + nonce + sealed).decode("ascii")
    return f"{CIPHERTEXT_PREFIX}{encoded}"


def decrypt(ciphertext: str, key: str) -> str:
    if not isinstance(ciphertext, str) or not ciphertext.startswith(CIPHERTEXT_PREFIX):
        raise DecryptionFailed("Ciphertext is not in a recognized envvault format.")
    try:
        raw = base64.urlsafe_b64decode(ciphertext[len(CIPHERTEXT_PREFIX):].encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise DecryptionFailed("Ciphertext is not valid base64.") from exc
    if len(raw) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        raise DecryptionFailed("Ciphertext is truncated.")

    salt = raw[:SALT_SIZE]
    nonce = raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    sealed = raw[SALT_SIZE + NONCE_SIZE:]
    try:
        plaintext = AESGCM(_derive_key(key, salt)).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise DecryptionFailed("Decryption failed - invalid key or corrupted data.") from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionFailed("Decrypted content is not valid UTF-8.") from exc


class SecretCodec:
    """Binds a shared key to :func:`encrypt` / :func:`decrypt`."""

    def __init__(self, key: str) -> None:
        if not isinstance(key, str) or not key:
            raise ValidationError("Encryption key must be a non-empty string.")
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        return encrypt(plaintext, self._key)

    def decrypt(self, ciphertext: str) -> str:
        return decrypt(ciphertext, self._key)
