from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from auth.errors import ConfigError, DecryptionError

KEY_BYTES = 32
IV_BYTES = 12
TAG_BYTES = 16
TOKEN_ASSOCIATED_DATA = b"spotify-auth"
PKCE_ASSOCIATED_DATA = b"spotify-pkce"


def parse_key(key_hex: str | None) -> bytes:
    """Decode the hex encryption key, refusing anything that is not 32 bytes."""
    if not key_hex or not key_hex.strip():
        raise ConfigError("COOKIE_ENCRYPTION_KEY environment variable is required.")
    try:
        key = bytes.fromhex(key_hex.strip())
    except ValueError as error:
        raise ConfigError("COOKIE_ENCRYPTION_KEY must be hex encoded.") from error
    if len(key) != KEY_BYTES:
        raise ConfigError("COOKIE_ENCRYPTION_KEY must be 32 bytes (64 hex characters).")
    return key


def generate_key() -> str:
    return os.urandom(KEY_BYTES).hex()


class TokenCipher:
    """AES-256-GCM codec producing ``iv:authTag:ciphertext`` hex records.

    The associated data binds every record to one purpose, so a ciphertext
    minted for the PKCE cookie will not decrypt as a token and vice versa.
    """

    def __init__(self, key: bytes, *, associated_data: bytes = TOKEN_ASSOCIATED_DATA) -> None:
        if not isinstance(key, bytes) or len(key) != KEY_BYTES:
            raise ConfigError("Encryption key must be exactly 32 bytes.")
        self._aesgcm = AESGCM(key)
        self._key = key
        self.associated_data = associated_data

    @classmethod
    def from_hex(
        cls, key_hex: str | None, *, associated_data: bytes = TOKEN_ASSOCIATED_DATA
    ) -> "TokenCipher":
        return cls(parse_key(key_hex), associated_data=associated_data)

    def for_purpose(self, associated_data: bytes) -> "TokenCipher":
        return TokenCipher(self._key, associated_data=associated_data)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_BYTES)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), self.associated_data)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, record: str) -> str:
        parts = record.split(":")
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted data format.", reason="format")

        try:
            iv = bytes.fromhex(parts[0])
            tag = bytes.fromhex(parts[1])
            ciphertext = bytes.fromhex(parts[2])
        except ValueError as error:
            raise DecryptionError("Encrypted data is not valid hex.", reason="hex") from error

        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionError("Invalid IV or auth tag length.", reason="format")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, self.associated_data)
        except InvalidTag as error:
            raise DecryptionError("Auth tag verification failed.", reason="tag") from error

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as error:
            raise DecryptionError("Decrypted data is not UTF-8.", reason="encoding") from error
