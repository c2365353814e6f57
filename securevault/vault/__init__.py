"""Vault module for SecureVault.

Stores files as AES-256-CBC blobs keyed from the operator's password,
catalogued in SQLite, with a journaled password-change protocol.

Usage:
    from securevault.vault import VaultManager

    with VaultManager() as vm:
        vm.initialize()
        vm.login("admin", "admin123")
        entry = vm.add(Path("notes.txt"), tags="personal")
        vm.retrieve(entry, Path("out"))
        vm.change_password("admin123", "N3w-pass!")
"""

# Exceptions
from .exceptions import (
    BadCredentialsError,
    BlobMissingError,
    CryptoUnavailableError,
    DecryptionError,
    InsufficientSpaceError,
    NameTakenError,
    RotationFailedError,
    SessionExpiredError,
    StoreError,
    VaultError,
    VaultIOError,
    VaultLockedError,
)

# Configuration
from .config import VaultConfig

# Crypto primitives
from .crypto import (
    EnvelopeCipher,
    KeyDerivation,
    decrypt,
    derive_key,
    encrypt,
    generate_salt,
    hash_password,
    wipe,
)

# Catalog
from .models import FileEntry, Operator
from .catalog import CatalogDB

# Blob storage
from .blob_store import BlobStore

# Session
from .session import VaultSession

# Rotation
from .rotation import (
    RotationJournal,
    RotationResult,
    recover_interrupted_rotation,
    rotate_password,
)

# Vault operations
from .vault_manager import (
    SpaceStatus,
    VaultManager,
    VaultStats,
)

__all__ = [
    # Exceptions
    "VaultError",
    "BadCredentialsError",
    "VaultLockedError",
    "SessionExpiredError",
    "InsufficientSpaceError",
    "BlobMissingError",
    "DecryptionError",
    "StoreError",
    "VaultIOError",
    "RotationFailedError",
    "NameTakenError",
    "CryptoUnavailableError",
    # Configuration
    "VaultConfig",
    # Crypto
    "KeyDerivation",
    "EnvelopeCipher",
    "generate_salt",
    "hash_password",
    "derive_key",
    "encrypt",
    "decrypt",
    "wipe",
    # Catalog
    "CatalogDB",
    "Operator",
    "FileEntry",
    # Blob storage
    "BlobStore",
    # Session
    "VaultSession",
    # Rotation
    "RotationJournal",
    "RotationResult",
    "rotate_password",
    "recover_interrupted_rotation",
    # Vault manager
    "VaultManager",
    "VaultStats",
    "SpaceStatus",
]
