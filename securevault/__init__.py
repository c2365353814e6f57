"""SecureVault - Password-bound encrypted file vault."""

__version__ = "0.1.0"

from .vault import FileEntry, Operator, VaultConfig, VaultManager

__all__ = [
    "__version__",
    "FileEntry",
    "Operator",
    "VaultConfig",
    "VaultManager",
]
