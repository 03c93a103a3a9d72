"""Symmetric encryption for token columns at rest."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


class TokenCipherService:
    """Encrypt and decrypt token strings using a Fernet key derived from a secret.

    Ciphertext carries a ``fernet:`` marker so rows written before encryption
    was enabled can still be read as plaintext.
    """

    PREFIX = "fernet:"

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest)
        self._fernet = Fernet(key)

    def is_encrypted(self, value: str) -> bool:
        return value.startswith(self.PREFIX)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the marked ciphertext."""
        if not plaintext:
            return plaintext
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return self.PREFIX + token.decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt marked ciphertext; unmarked values are returned unchanged."""
        if not self.is_encrypted(ciphertext):
            return ciphertext
        try:
            plaintext = self._fernet.decrypt(ciphertext[len(self.PREFIX):].encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt token; the encryption secret may have changed."
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipherService"]
