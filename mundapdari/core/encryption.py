"""Field-level encryption for personal data.

Phone numbers are stored AES-256-CBC encrypted with a random IV per call
and an HMAC-SHA256 tag over IV and ciphertext (encrypt-then-MAC).
Lookups go through a deterministic keyed hash of the normalized number,
so the ciphertext never has to be scanned.
"""

import hashlib
import hmac
import json
import os
import re
import secrets
import string
from functools import lru_cache

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from mundapdari.config import settings

IV_LENGTH = 16
KEY_LENGTH = 32

_NATIONAL_MOBILE = re.compile(r"^1[016789]\d{7,8}$")


class EncryptionConfigError(ValueError):
    """Raised when the configured key is not 32 bytes of hex."""


class DecryptionError(ValueError):
    """Raised when a stored value cannot be authenticated or decrypted."""


def _parse_key(hex_key: str) -> bytes:
    try:
        key = bytes.fromhex(hex_key)
    except ValueError as exc:
        raise EncryptionConfigError("Encryption key must be hex encoded") from exc
    if len(key) != KEY_LENGTH:
        raise EncryptionConfigError(
            f"Encryption key must be {KEY_LENGTH * 2} hex characters ({KEY_LENGTH} bytes)"
        )
    return key


class PhoneCipher:
    """AES-256-CBC + HMAC-SHA256 cipher for short text fields."""

    def __init__(self, hex_key: str, lookup_key: str | None = None):
        self._key = _parse_key(hex_key)
        self._mac_key = hmac.new(self._key, b"mundapdari-mac", hashlib.sha256).digest()
        if lookup_key:
            self._lookup_key = lookup_key.encode()
        else:
            self._lookup_key = hmac.new(
                self._key, b"mundapdari-lookup", hashlib.sha256
            ).digest()

    def _tag(self, iv: bytes, ciphertext: bytes) -> str:
        return hmac.new(self._mac_key, iv + ciphertext, hashlib.sha256).hexdigest()

    def encrypt(self, text: str) -> dict[str, str]:
        """Encrypt *text* and return ``{"encrypted", "iv", "tag"}`` as hex."""
        if not text:
            raise ValueError("Text to encrypt cannot be empty")

        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return {
            "encrypted": ciphertext.hex(),
            "iv": iv.hex(),
            "tag": self._tag(iv, ciphertext),
        }

    def decrypt(self, payload: dict[str, str]) -> str:
        """Verify and decrypt a payload produced by :meth:`encrypt`."""
        try:
            ciphertext = bytes.fromhex(payload["encrypted"])
            iv = bytes.fromhex(payload["iv"])
            tag = payload["tag"]
        except (KeyError, TypeError, ValueError) as exc:
            raise DecryptionError("Decryption failed") from exc

        if len(iv) != IV_LENGTH or not hmac.compare_digest(self._tag(iv, ciphertext), tag):
            raise DecryptionError("Decryption failed")

        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except ValueError as exc:
            raise DecryptionError("Decryption failed") from exc

    def encrypt_to_text(self, text: str) -> str:
        return json.dumps(self.encrypt(text))

    def decrypt_from_text(self, stored: str) -> str:
        try:
            payload = json.loads(stored)
        except (TypeError, ValueError) as exc:
            raise DecryptionError("Decryption failed") from exc
        return self.decrypt(payload)

    def lookup_hash(self, phone: str) -> str:
        """Deterministic keyed hash of a phone number for indexed lookup."""
        normalized = normalize_phone(phone)
        return hmac.new(self._lookup_key, normalized.encode(), hashlib.sha256).hexdigest()


@lru_cache
def get_phone_cipher() -> PhoneCipher:
    """FastAPI dependency returning the cipher built from settings."""
    return PhoneCipher(settings.ENCRYPTION_KEY, settings.PHONE_HASH_KEY)


def phone_lookup_hash(phone: str) -> str:
    """Lookup hash of *phone* using the configured cipher's key."""
    return get_phone_cipher().lookup_hash(phone)


def normalize_phone(phone: str) -> str:
    """Normalize a Korean mobile number to ``+82XXXXXXXXXX``.

    Accepts ``010-1234-5678``, ``01012345678``, ``+82-10-1234-5678`` and
    ``1012345678``.
    """
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("82"):
        national = digits[2:]
    elif digits.startswith("0"):
        national = digits[1:]
    else:
        national = digits

    if not _NATIONAL_MOBILE.match(national):
        raise ValueError("Invalid Korean phone number format")
    return f"+82{national}"


def hash_value(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def generate_token(length: int = 32) -> str:
    """Random hex token of *length* bytes."""
    return secrets.token_hex(length)


def generate_invitation_code(length: int = 8) -> str:
    """Random code of uppercase letters and digits, easy to read out loud."""
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def mask_sensitive(value: str | None, visible: int = 3) -> str:
    """Keep the first *visible* characters and star out the rest."""
    if not value or len(value) <= visible:
        return "***"
    return value[:visible] + "*" * (len(value) - visible)
