"""
Archive Encryption - AES-256-GCM Envelope

Wraps a whole export archive in authenticated encryption keyed by a
passphrase.

Blob layout:
    nonce      : 12 bytes
    ciphertext : remaining bytes (AES-256-GCM, 16-byte tag appended)
"""

import hashlib
import os
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import AuthenticationError


NONCE_SIZE = 12
TAG_SIZE = 16


def derive_key(passphrase: str) -> bytes:
    """
    Derive the 256-bit archive key from a passphrase.

    A single unsalted SHA-256 pass, compatible with existing exports. It
    offers no protection against offline guessing; a memory-hard KDF with a
    per-archive salt would have to change the blob layout.
    """
    return hashlib.sha256(passphrase.encode("utf-8")).digest()


class ArchiveCipher:
    """
    AES-256-GCM encryption for export archives.

    Features:
    - Fresh random nonce per encryption
    - Tamper detection over the whole archive
    - Fails closed: no plaintext is returned unless the tag verifies
    """

    def __init__(self, passphrase: str):
        """
        Initialize archive cipher.

        Args:
            passphrase: User-supplied passphrase (non-empty)
        """
        if not passphrase:
            raise ValueError("passphrase must not be empty")
        self._aead = AESGCM(derive_key(passphrase))

    def encrypt(self, data: bytes) -> bytes:
        """
        Encrypt archive bytes.

        Args:
            data: Plain archive

        Returns:
            nonce || ciphertext || tag
        """
        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aead.encrypt(nonce, data, None)

    def decrypt(self, blob: bytes) -> bytes:
        """
        Decrypt archive bytes.

        Args:
            blob: nonce || ciphertext || tag

        Returns:
            Plain archive

        Raises:
            AuthenticationError: Wrong passphrase, truncated or modified data
        """
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise AuthenticationError()

        nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise AuthenticationError() from None

    def encrypt_file(self, input_path: Path, output_path: Path) -> int:
        """
        Encrypt a file into another file.

        Returns:
            Size of the encrypted file
        """
        blob = self.encrypt(Path(input_path).read_bytes())
        Path(output_path).write_bytes(blob)
        return len(blob)

    def decrypt_file(self, input_path: Path, output_path: Path) -> Path:
        """
        Decrypt a file into another file. Nothing is written on failure.

        Returns:
            Path to decrypted file
        """
        plaintext = self.decrypt(Path(input_path).read_bytes())
        Path(output_path).write_bytes(plaintext)
        return Path(output_path)
