"""API key encryption.

API keys are sealed with AES-256-GCM under a key derived from the fixed
application secret in config. Every call to ``encrypt`` draws a fresh
96-bit IV. The secret ships with the application, so this is at-rest
obfuscation for a single-user local store and not protection against
someone who can read both the store and the code.
"""

import base64
import binascii
import os
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import ENCRYPTION_KDF_ITERATIONS, ENCRYPTION_SALT, ENCRYPTION_SECRET
from core.exceptions import DecryptionError
from schemas.storage import EncryptedBlob

IV_LENGTH = 12


def derive_key(secret: str, salt: bytes = ENCRYPTION_SALT,
               iterations: int = ENCRYPTION_KDF_ITERATIONS) -> bytes:
    """Derive the 256-bit AES key from the application secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


class ApiKeyCipher:
    """Encrypts and decrypts short strings such as API keys."""

    def __init__(self, secret: str = ENCRYPTION_SECRET):
        """Initialize ApiKeyCipher.

        Args:
            secret: Application secret the AES key is derived from.
        """
        self._aesgcm = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> EncryptedBlob:
        """Encrypt a string under a fresh random IV.

        Args:
            plaintext: The value to protect.

        Returns:
            EncryptedBlob with base64 IV and ciphertext.
        """
        iv = os.urandom(IV_LENGTH)
        ciphertext = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return EncryptedBlob(
            iv=base64.b64encode(iv).decode("ascii"),
            data=base64.b64encode(ciphertext).decode("ascii"),
        )

    def decrypt(self, blob: Union[EncryptedBlob, Dict[str, Any]]) -> str:
        """Decrypt a blob produced by ``encrypt``.

        Args:
            blob: EncryptedBlob or its stored dict form.

        Returns:
            The plaintext string.

        Raises:
            DecryptionError: If the blob is malformed, corrupted, or was
                sealed under a different key.
        """
        try:
            if not isinstance(blob, EncryptedBlob):
                blob = EncryptedBlob.model_validate(blob)
            iv = base64.b64decode(blob.iv, validate=True)
            ciphertext = base64.b64decode(blob.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Malformed encrypted blob: {e}") from e

        if len(iv) != IV_LENGTH:
            raise DecryptionError(f"Invalid IV length: {len(iv)}")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext is corrupted or the key does not match") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not valid UTF-8") from e
