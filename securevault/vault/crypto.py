"""Core cryptographic primitives for vault encryption.

Uses the cryptography library for:
- SHA-256 password verifiers (Base64 of SHA-256(salt || password))
- PBKDF2-HMAC-SHA256 key derivation (10,000 iterations, 256-bit key)
- AES-256-CBC with PKCS#7 padding for file envelopes

Envelope format (no header, no MAC, kept for compatibility with existing vaults):
    [IV (16 bytes)] [AES-256-CBC ciphertext]

The verifier and the encryption key are independent derivations from the
same salt field; a password change must regenerate the salt and recompute both.
"""

import base64
import binascii
import hmac
import os
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import CryptoUnavailableError, DecryptionError

# Key derivation parameters
PBKDF2_ITERATIONS = 10_000
SALT_SIZE = 32  # 256 bits
KEY_SIZE = 32  # 256 bits for AES-256

# Envelope parameters
IV_SIZE = 16
BLOCK_SIZE_BITS = 128

Key = Union[bytes, bytearray]


def _random_bytes(size: int) -> bytes:
    """Draw bytes from the OS random source."""
    try:
        return os.urandom(size)
    except NotImplementedError as e:
        raise CryptoUnavailableError() from e


def _decode_salt(salt: str) -> bytes:
    try:
        return base64.b64decode(salt, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Salt is not valid Base64") from e


class KeyDerivation:
    """Derives verifiers and encryption keys from the operator password."""

    @staticmethod
    def generate_salt(size: int = SALT_SIZE) -> str:
        """Generate a fresh random salt, Base64-encoded."""
        return base64.b64encode(_random_bytes(size)).decode("ascii")

    @staticmethod
    def hash_password(password: str, salt: str) -> str:
        """
        Compute the stored password verifier.

        Args:
            password: Operator password
            salt: Base64-encoded salt

        Returns:
            Base64 of SHA-256(salt-bytes || utf8(password))
        """
        try:
            digest = hashes.Hash(hashes.SHA256())
        except UnsupportedAlgorithm as e:
            raise CryptoUnavailableError() from e
        digest.update(_decode_salt(salt))
        digest.update(password.encode("utf-8"))
        return base64.b64encode(digest.finalize()).decode("ascii")

    @staticmethod
    def verify_password(password: str, password_hash: str, salt: str) -> bool:
        """
        Verify a password against a stored verifier in constant time.

        Args:
            password: Password to check
            password_hash: Stored verifier (Base64)
            salt: Stored salt (Base64)

        Returns:
            True if the password matches
        """
        candidate = KeyDerivation.hash_password(password, salt)
        return hmac.compare_digest(candidate.encode("ascii"), password_hash.encode("ascii"))

    @staticmethod
    def derive_key(password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytearray:
        """
        Derive a 256-bit key from password using PBKDF2-HMAC-SHA256.

        The key is returned as a mutable buffer so the owner can overwrite it
        when the session ends.

        Args:
            password: Operator password
            salt: Base64-encoded salt
            iterations: PBKDF2 iteration count

        Returns:
            32-byte derived key
        """
        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=KEY_SIZE,
                salt=_decode_salt(salt),
                iterations=iterations,
            )
        except UnsupportedAlgorithm as e:
            raise CryptoUnavailableError() from e
        return bytearray(kdf.derive(password.encode("utf-8")))


class EnvelopeCipher:
    """
    AES-256-CBC envelope encryption for vault blobs.

    A fresh IV is drawn for every blob and written in front of the
    ciphertext. Decryption failures never say whether the blob was too
    short or the padding was wrong.
    """

    def __init__(self, key: Key):
        """
        Initialize with a 256-bit key.

        Args:
            key: 32-byte encryption key
        """
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key

    def _cipher(self, iv: bytes) -> Cipher:
        try:
            return Cipher(algorithms.AES(self._key), modes.CBC(iv))
        except UnsupportedAlgorithm as e:
            raise CryptoUnavailableError() from e

    def encrypt(self, plaintext: bytes) -> bytes:
        """
        Encrypt data.

        Args:
            plaintext: Data to encrypt

        Returns:
            IV followed by the PKCS#7-padded ciphertext
        """
        iv = _random_bytes(IV_SIZE)
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = self._cipher(iv).encryptor()
        return iv + encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, blob: bytes) -> bytes:
        """
        Decrypt data.

        Args:
            blob: IV followed by ciphertext

        Returns:
            Decrypted plaintext

        Raises:
            DecryptionError: On any structural or padding error
        """
        block_bytes = BLOCK_SIZE_BITS // 8
        body_length = len(blob) - IV_SIZE
        if body_length < block_bytes or body_length % block_bytes:
            raise DecryptionError()

        iv, ciphertext = blob[:IV_SIZE], blob[IV_SIZE:]
        decryptor = self._cipher(iv).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise DecryptionError() from None


# Module-level convenience functions


def generate_salt() -> str:
    """Generate a fresh Base64 salt."""
    return KeyDerivation.generate_salt()


def hash_password(password: str, salt: str) -> str:
    """Compute the Base64 SHA-256 verifier for a password."""
    return KeyDerivation.hash_password(password, salt)


def derive_key(password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytearray:
    """Derive the 32-byte session key for a password."""
    return KeyDerivation.derive_key(password, salt, iterations)


def encrypt(plaintext: bytes, key: Key) -> bytes:
    """Encrypt bytes into an IV-prefixed envelope."""
    return EnvelopeCipher(key).encrypt(plaintext)


def decrypt(blob: bytes, key: Key) -> bytes:
    """Decrypt an IV-prefixed envelope."""
    return EnvelopeCipher(key).decrypt(blob)


def wipe(buffer: bytearray) -> None:
    """Overwrite a key buffer with zeros in place."""
    for i in range(len(buffer)):
        buffer[i] = 0
