"""Cryptographic utilities for secret key storage.

Secrets are encrypted with AES-256-CBC (PKCS7 padding) under a key derived
from the owner's platform identity with scrypt and a static salt. The
serialized form is ``hex(iv) + ":" + hex(ciphertext)``, which is the
format existing records use.

The key is reproducible from the identity alone: users can recover their
wallets without a separate password, at the cost of the identity being the
only secret input.
"""

import asyncio
import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from solkeeper.config import Settings, get_settings
from solkeeper.errors import DecryptionFailedError
from solkeeper.keycodec import deserialize_secret, serialize_secret

logger = logging.getLogger(__name__)

IV_LENGTH = 16
KEY_LENGTH = 32


@dataclass(frozen=True)
class EncryptedBlob:
    """Initialisation vector and ciphertext of one encrypted secret."""

    iv: bytes
    ciphertext: bytes

    def serialize(self) -> str:
        """Persisted form: ``<ivHex>:<ciphertextHex>``."""
        return f"{self.iv.hex()}:{self.ciphertext.hex()}"

    @classmethod
    def parse(cls, text: str) -> "EncryptedBlob":
        """Parse the persisted form.

        Raises:
            DecryptionFailedError: If the text is not ``hex:hex`` with a
                16-byte IV and a whole number of cipher blocks
        """
        parts = text.strip().split(":")
        if len(parts) != 2:
            raise DecryptionFailedError("Encrypted secret is not in iv:ciphertext form")
        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError:
            raise DecryptionFailedError("Encrypted secret is not valid hex")

        if len(iv) != IV_LENGTH:
            raise DecryptionFailedError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
        if not ciphertext or len(ciphertext) % 16:
            raise DecryptionFailedError("Ciphertext length is not a multiple of the block size")

        return cls(iv=iv, ciphertext=ciphertext)

    def __str__(self) -> str:
        return self.serialize()


class SecretCipher:
    """Encrypts and decrypts secrets keyed by the owner's identity.

    Usage:
        cipher = SecretCipher()
        blob = cipher.encrypt("secret", "123456789")
        plaintext = cipher.decrypt(blob, "123456789")
    """

    def __init__(
        self,
        salt: Union[str, bytes] = b"salt",
        n: int = 16384,
        r: int = 8,
        p: int = 1,
    ):
        """Initialize with key derivation parameters.

        Args:
            salt: Static scrypt salt shared by all users
            n: scrypt CPU/memory cost (power of two)
            r: scrypt block size
            p: scrypt parallelism
        """
        self._salt = salt.encode() if isinstance(salt, str) else salt
        self._n = n
        self._r = r
        self._p = p

    def derive_key(self, identity: str) -> bytes:
        """Derive the 32-byte AES key for an identity."""
        return hashlib.scrypt(
            identity.encode(),
            salt=self._salt,
            n=self._n,
            r=self._r,
            p=self._p,
            maxmem=128 * self._n * self._r * (self._p + 1) + 1024 * 1024,
            dklen=KEY_LENGTH,
        )

    def encrypt(self, plaintext: str, identity: str) -> EncryptedBlob:
        """Encrypt plaintext under a fresh random IV."""
        key = self.derive_key(identity)
        iv = os.urandom(IV_LENGTH)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode()) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return EncryptedBlob(iv=iv, ciphertext=ciphertext)

    def decrypt(self, blob: Union[EncryptedBlob, str], identity: str) -> str:
        """Decrypt a blob or its serialized form.

        Raises:
            DecryptionFailedError: If the padding check fails, the plaintext
                is not UTF-8, or the blob is malformed (wrong identity or
                corrupted data)
        """
        if isinstance(blob, str):
            blob = EncryptedBlob.parse(blob)

        key = self.derive_key(identity)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(blob.iv)).decryptor()
        padded = decryptor.update(blob.ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            data = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            logger.warning(f"Secret decryption failed: bad padding ({len(blob.ciphertext)} bytes)")
            raise DecryptionFailedError("Decryption failed: wrong key or corrupted data")

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Secret decryption failed: plaintext is not UTF-8")
            raise DecryptionFailedError("Decryption failed: wrong key or corrupted data")

    def seal_secret(self, material: bytes, identity: str) -> str:
        """Encrypt 64-byte key material into its persisted string form."""
        return self.encrypt(serialize_secret(material), identity).serialize()

    def open_secret(self, encrypted: str, identity: str) -> bytes:
        """Decrypt a persisted secret back to raw bytes.

        The length is not checked; callers must verify it is 64.

        Raises:
            DecryptionFailedError: If decryption fails
            CorruptSecretError: If the plaintext is not a known secret form
        """
        return deserialize_secret(self.decrypt(encrypted, identity))

    async def seal_secret_async(self, material: bytes, identity: str) -> str:
        """Run ``seal_secret`` on the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.seal_secret, material, identity)

    async def open_secret_async(self, encrypted: str, identity: str) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.open_secret, encrypted, identity)


def get_cipher(settings: Optional[Settings] = None) -> SecretCipher:
    """Get a cipher configured from settings."""
    settings = settings or get_settings()
    return SecretCipher(
        salt=settings.key_derivation_salt,
        n=settings.scrypt_n,
        r=settings.scrypt_r,
        p=settings.scrypt_p,
    )
