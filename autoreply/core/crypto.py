"""
Credential encryption for stored mailbox passwords.

Tokens are ``hex(iv):hex(ciphertext)`` using AES-256-CBC with PKCS7 padding,
the format the account store writes.
"""

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from autoreply.config import settings
from autoreply.core.errors import ConfigurationMissingError


class CredentialCipher:
    """encrypt(text) -> token / decrypt(token) -> text."""

    def __init__(self, key: str | None = None):
        raw = (key if key is not None else settings.encryption_key).encode("utf-8")
        if len(raw) < 32:
            raise ConfigurationMissingError("ENCRYPTION_KEY must be at least 32 bytes")
        self._key = raw[:32]

    def encrypt(self, text: str) -> str:
        iv = os.urandom(16)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        """
        Decrypt a stored token.

        Raises:
            ConfigurationMissingError: token is empty, malformed or encrypted
                with a different key.
        """
        if not token:
            raise ConfigurationMissingError("No encrypted credential stored")
        iv_hex, sep, data_hex = token.partition(":")
        try:
            if not sep:
                raise ValueError("missing iv separator")
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(data_hex)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except ValueError as e:
            raise ConfigurationMissingError(f"Cannot decrypt credential: {e}") from e
