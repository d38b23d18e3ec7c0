from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


KEY_LENGTH = 32
NONCE_LENGTH = 12
PBKDF2_ITERATIONS = 100_000


def derive_key(password: str, salt: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt_text(plain_text: str, password: str, salt: str) -> str:
    """AES-256-GCM; returns base64(nonce || ciphertext || tag)."""
    if not password:
        raise ValueError("password must not be empty")
    nonce = os.urandom(NONCE_LENGTH)
    sealed = AESGCM(derive_key(password, salt)).encrypt(nonce, plain_text.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_text(encrypted_text: str, password: str, salt: str) -> str:
    try:
        blob = base64.b64decode(encrypted_text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("encrypted text is not valid base64") from exc
    if len(blob) <= NONCE_LENGTH:
        raise ValueError("encrypted text is too short")

    nonce, sealed = blob[:NONCE_LENGTH], blob[NONCE_LENGTH:]
    try:
        plain = AESGCM(derive_key(password, salt)).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise ValueError("decryption failed: wrong password/salt or tampered data") from exc
    return plain.decode("utf-8")
