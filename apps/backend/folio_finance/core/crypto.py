"""PII protection helpers.

E-mail addresses are stored twice: a salted SHA-256 digest used for lookups
and an AES-256-GCM ciphertext (``iv:tag:ciphertext``, base64 parts) that is
only decrypted for display. The AES key is derived from ``ENCRYPTION_KEY``
with scrypt.
"""

from __future__ import annotations

import base64
import hashlib
import os
from functools import lru_cache

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .config import settings

MIN_KEY_LENGTH = 32
MIN_PASSWORD_LENGTH = 12
_IV_BYTES = 16
_TAG_BYTES = 16
_KDF_SALT = b"salt"


class EncryptionKeyError(ValueError):
    pass


def require_encryption_key(key: str | None = None) -> str:
    value = key if key is not None else settings.ENCRYPTION_KEY
    if not value or len(value) < MIN_KEY_LENGTH:
        raise EncryptionKeyError(f"ENCRYPTION_KEY is missing or too short (min {MIN_KEY_LENGTH} chars)")
    return value


@lru_cache(maxsize=8)
def _derive_key(secret: str) -> bytes:
    kdf = Scrypt(salt=_KDF_SALT, length=32, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_email(email: str, key: str | None = None) -> str:
    secret = require_encryption_key(key)
    return hashlib.sha256((normalize_email(email) + secret).encode("utf-8")).hexdigest()


def encrypt_data(plaintext: str, key: str | None = None) -> str:
    aes = AESGCM(_derive_key(require_encryption_key(key)))
    iv = os.urandom(_IV_BYTES)
    sealed = aes.encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return ":".join(base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext))


def decrypt_data(token: str, key: str | None = None) -> str:
    parts = token.split(":")
    if len(parts) != 3 or not all(parts):
        raise ValueError("Invalid encrypted string format")
    iv, tag, ciphertext = (base64.b64decode(p) for p in parts)
    aes = AESGCM(_derive_key(require_encryption_key(key)))
    try:
        return aes.decrypt(iv, ciphertext + tag, None).decode("utf-8")
    except InvalidTag as exc:
        raise ValueError("Failed to decrypt data") from exc


def encrypt_email(email: str, key: str | None = None) -> tuple[str, str]:
    """Return ``(encrypted, hash)`` for a normalized e-mail address."""
    normalized = normalize_email(email)
    return encrypt_data(normalized, key), hash_email(normalized, key)


def hash_password(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
