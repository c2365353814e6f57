"""Vault exceptions for SecureVault.

Messages are safe to show to the operator: they never carry file paths,
SQL text or key material.
"""

from typing import Optional


class VaultError(Exception):
    """Base exception for vault operations."""

    pass


class BadCredentialsError(VaultError):
    """Raised when the operator name or password is not accepted.

    Unknown names and wrong passwords share the same message.
    """

    def __init__(self, message: str = "Authentication failed. Please check your credentials."):
        super().__init__(message)


class VaultLockedError(VaultError):
    """Raised when an operation needs a session key and none is set."""

    def __init__(self, message: str = "Vault is locked. Unlock with password first."):
        super().__init__(message)


class SessionExpiredError(VaultLockedError):
    """Raised when the vault session has timed out."""

    def __init__(self, message: str = "Session has expired. Please unlock again."):
        super().__init__(message)


class InsufficientSpaceError(VaultError):
    """Raised when the free-space policy rejects a new file."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient disk space: {requested:,} bytes required, {available:,} bytes available."
        )


class BlobMissingError(VaultError):
    """Raised when a catalog entry points at a blob that no longer exists."""

    def __init__(self, entry_id: Optional[int] = None):
        self.entry_id = entry_id
        if entry_id is not None:
            message = f"Encrypted file for entry {entry_id} is missing."
        else:
            message = "Encrypted file is missing."
        super().__init__(message)


class DecryptionError(VaultError):
    """Raised when decryption fails (wrong key or corrupted blob)."""

    def __init__(self, message: str = "Decryption failed. Invalid credentials or corrupted file."):
        super().__init__(message)


class StoreError(VaultError):
    """Raised when the catalog or blob store cannot complete an operation."""

    def __init__(self, message: str = "Storage operation failed. Please try again later."):
        super().__init__(message)


class VaultIOError(VaultError):
    """Raised when reading a source file or writing an output file fails."""

    def __init__(self, message: str = "File operation failed. Please check file permissions and disk space."):
        super().__init__(message)


class RotationFailedError(VaultError):
    """Raised when a password rotation aborts; the old password still opens the vault."""

    def __init__(self, entry_id: Optional[int] = None, message: Optional[str] = None):
        self.entry_id = entry_id
        if message is None:
            if entry_id is not None:
                message = f"Password change failed while re-encrypting entry {entry_id}. No changes were made."
            else:
                message = "Password change failed. No changes were made."
        super().__init__(message)


class NameTakenError(VaultError):
    """Raised when a new operator name is already used by another operator."""

    def __init__(self, message: str = "That username is already taken."):
        super().__init__(message)


class CryptoUnavailableError(VaultError):
    """Raised when the OS random source or a cipher primitive is unavailable."""

    def __init__(self, message: str = "Cryptographic support is unavailable on this system."):
        super().__init__(message)
