"""
AES line codec for the plugin protocol and stored credential passwords

Each message is base64(iv || AES-CBC(PKCS7(plaintext))) with a 16 byte IV,
which is what the deployed SSH plugin reads and writes.
"""

import base64
import binascii
import logging
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from errors import DecryptError

logger = logging.getLogger(__name__)

IV_SIZE = 16
VALID_KEY_SIZES = (16, 24, 32)


class PayloadCipher:
    """Encrypts/decrypts single protocol lines with a shared symmetric key"""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Encryption secret is not configured (ENCRYPTION_SECRET)")
        try:
            key = base64.b64decode(secret, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Encryption secret is not valid base64: {e}") from e
        if len(key) not in VALID_KEY_SIZES:
            raise ValueError(f"Encryption secret must decode to 16, 24 or 32 bytes, got {len(key)}")
        self._key = key

    @staticmethod
    def generate_secret(size: int = 16) -> str:
        """Return a new random base64 key suitable for ENCRYPTION_SECRET"""
        return base64.b64encode(os.urandom(size)).decode("ascii")

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, line: str) -> str:
        """
        Decrypt one base64 line back to text
        Raises DecryptError for anything that is not a valid message under this key
        """
        try:
            raw = base64.b64decode(line.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptError(f"Invalid base64 payload: {e}") from e

        if len(raw) <= IV_SIZE or (len(raw) - IV_SIZE) % IV_SIZE:
            raise DecryptError(f"Invalid payload length: {len(raw)} bytes")

        iv, ciphertext = raw[:IV_SIZE], raw[IV_SIZE:]
        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise DecryptError(f"Decryption failed: {e}") from e
