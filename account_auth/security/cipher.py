"""AES-CFB encryption used for user passwords at rest."""

from __future__ import annotations

import secrets

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

BLOCK_SIZE = 16
_VALID_KEY_SIZES = frozenset({16, 24, 32})


class CipherNotConfigured(RuntimeError):
    pass


class PasswordCipher:
    """Symmetric cipher configured once per process with an AES key.

    Each ciphertext is ``iv || CFB(plaintext)`` with a fresh random IV, so
    encrypting the same payload twice never yields the same bytes.
    """

    def __init__(self, key: bytes | str | None = None) -> None:
        self._key: bytes | None = None
        if key:
            self.set_key(key)

    @property
    def configured(self) -> bool:
        return self._key is not None

    def set_key(self, key: bytes | str) -> None:
        """Install the AES key; it must be 16, 24 or 32 bytes long."""
        if isinstance(key, str):
            key = key.encode("utf-8")
        if len(key) not in _VALID_KEY_SIZES:
            raise ValueError(f"invalid AES key size {len(key)}; expected 16, 24 or 32 bytes")
        self._key = bytes(key)

    def _require_key(self) -> bytes:
        if self._key is None:
            raise CipherNotConfigured("encryption key has not been configured")
        return self._key

    def encrypt(self, plaintext: bytes) -> bytes:
        key = self._require_key()
        iv = secrets.token_bytes(BLOCK_SIZE)
        encryptor = Cipher(algorithms.AES(key), modes.CFB(iv)).encryptor()
        return iv + encryptor.update(plaintext) + encryptor.finalize()

    def decrypt(self, ciphertext: bytes) -> bytes:
        key = self._require_key()
        if len(ciphertext) < BLOCK_SIZE:
            raise ValueError("ciphertext too short")
        iv, body = ciphertext[:BLOCK_SIZE], ciphertext[BLOCK_SIZE:]
        decryptor = Cipher(algorithms.AES(key), modes.CFB(iv)).decryptor()
        return decryptor.update(body) + decryptor.finalize()
