"""
API key encryption at rest (AES-256-GCM).

Stored value layout (base64):

    salt (16) | iv (12) | tag (16) | ciphertext

The AES key is derived per value with PBKDF2-HMAC-SHA256 (100 000 iterations)
from the AI_ENCRYPTION_KEY secret, so rotating the secret invalidates every
stored key at once.
"""

from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from docintel.core.config import settings

SALT_LENGTH = 16
IV_LENGTH   = 12
TAG_LENGTH  = 16
KEY_LENGTH  = 32
ITERATIONS  = 100_000


class EncryptionKeyMissing(RuntimeError):
    """AI_ENCRYPTION_KEY is not set."""


def _derive_key(salt: bytes, secret: str | None) -> bytes:
    secret = secret if secret is not None else settings.ai_encryption_key
    if not secret:
        raise EncryptionKeyMissing("AI_ENCRYPTION_KEY is not configured")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, secret: str | None = None) -> str:
    salt = os.urandom(SALT_LENGTH)
    iv   = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(salt, secret)).encrypt(iv, plaintext.encode("utf-8"), None)
    # AESGCM appends the tag; the stored layout keeps it ahead of the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt(token: str, secret: str | None = None) -> str:
    """Raises cryptography.exceptions.InvalidTag on a wrong secret or tampered value."""
    raw = base64.b64decode(token)
    salt = raw[:SALT_LENGTH]
    iv   = raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
    tag  = raw[SALT_LENGTH + IV_LENGTH:SALT_LENGTH + IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[SALT_LENGTH + IV_LENGTH + TAG_LENGTH:]
    plain = AESGCM(_derive_key(salt, secret)).decrypt(iv, ciphertext + tag, None)
    return plain.decode("utf-8")


def mask_api_key(key: str) -> str:
    """sk-proj-abcdef1234 → sk-****...1234"""
    if len(key) <= 8:
        return "****"
    return f"{key[:3]}****...{key[-4:]}"
