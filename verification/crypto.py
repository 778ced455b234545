# SPDX-License-Identifier: GPL-3.0-only
"""Cryptographic utilities."""

import hmac
import secrets
import string

from Crypto.Cipher import AES

from base_logger import get_logger

logger = get_logger(__name__)


def encrypt_aes(key, plaintext, is_bytes=False):
    """
    Encrypts a plaintext string or bytes using AES-256 encryption.

    Args:
        key (bytes): The encryption key (must be 32 bytes long).
        plaintext (str or bytes): The plaintext to be encrypted.
        is_bytes (bool): If True, plaintext is treated as bytes; otherwise, it's encoded as UTF-8.

    Returns:
        bytes: The encrypted ciphertext.
    """
    if len(key) != 32:
        raise ValueError("AES-256 key must be 32 bytes long")

    if not isinstance(plaintext, (str, bytes)):
        raise TypeError("Plaintext must be either a string or bytes")

    if not is_bytes and isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")

    logger.debug("Encrypting plaintext using AES-256...")
    cipher = AES.new(key, AES.MODE_EAX)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)

    return cipher.nonce + tag + ciphertext


def decrypt_aes(key, ciphertext, is_bytes=False):
    """
    Decrypts a ciphertext string or bytes using AES-256 decryption.

    Args:
        key (bytes): The decryption key (must be 32 bytes long).
        ciphertext (bytes): The encrypted ciphertext (nonce + tag + ciphertext).
        is_bytes (bool): If True, returns decrypted bytes; otherwise, returns a decoded string.

    Returns:
        str or bytes: The decrypted plaintext (either as a string or bytes).
    """
    if len(key) != 32:
        raise ValueError("AES-256 key must be 32 bytes long")

    if not isinstance(ciphertext, bytes):
        raise TypeError("Ciphertext must be in bytes")

    logger.debug("Decrypting ciphertext using AES-256...")
    nonce = ciphertext[:16]
    tag = ciphertext[16:32]
    ciphertext = ciphertext[32:]

    cipher = AES.new(key, AES.MODE_EAX, nonce=nonce)
    plaintext = cipher.decrypt_and_verify(ciphertext, tag)

    if is_bytes:
        return plaintext
    return plaintext.decode("utf-8")


def generate_otp(length: int = 6) -> str:
    """Generate random numeric OTP."""
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_issuance_id() -> str:
    """Generate an opaque identifier for an OTP issuance."""
    return f"otp_{secrets.token_urlsafe(16)}"


def codes_match(expected: str, provided: str) -> bool:
    """Constant-time comparison of two OTP codes."""
    if expected is None or provided is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
