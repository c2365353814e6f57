"""Blob storage for encrypted vault files.

Blobs live as flat files directly under a private directory, named with
16 random URL-safe bytes plus the ``.enc`` extension, so a blob name never
reveals the original filename. Every write goes to a sibling temp file that
is fsynced and then renamed over the target.

Layout:
    <home>/.securevault/files/
        <22 url-safe chars>.enc        # IV || AES-256-CBC ciphertext
        <22 url-safe chars>.enc.bak    # pre-rotation copy, only while rotating
"""

import base64
import os
import shutil
from pathlib import Path
from typing import Optional

from ..utils.logging import get_logger
from .config import VaultConfig
from .exceptions import BlobMissingError, CryptoUnavailableError, StoreError, VaultIOError

logger = get_logger(__name__)

TEMP_SUFFIX = ".tmp"
BACKUP_SUFFIX = ".bak"


def _fsync_directory(directory: Path) -> None:
    """Flush a directory entry after a rename (POSIX only, best effort)."""
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


class BlobStore:
    """
    Scoped creation, reading and deletion of opaque ciphertext files.

    Paths are opaque to callers; any path that is not a direct child of the
    store's root is rejected.
    """

    def __init__(self, root: Path, config: Optional[VaultConfig] = None):
        """
        Initialize the blob store.

        Args:
            root: Private blob directory (created on first use)
            config: Vault configuration (defaults are used if not provided)
        """
        self.root = Path(root)
        self.config = config or VaultConfig()

    def ensure_root(self) -> Path:
        """Create the blob directory (and parents) if needed."""
        try:
            self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError("Failed to create the vault directory.") from e
        return self.root

    def _scoped(self, path: Path) -> Path:
        """Reject any path that is not directly inside the root."""
        path = Path(path)
        if path.parent.resolve() != self.root.resolve():
            raise StoreError("Blob path is outside the vault.")
        return path

    def _new_blob_path(self) -> Path:
        """Pick a fresh random blob name that does not exist yet."""
        while True:
            try:
                raw = os.urandom(self.config.blob_name_bytes)
            except NotImplementedError as e:
                raise CryptoUnavailableError() from e
            name = base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")
            path = self.root / f"{name}{self.config.encrypted_extension}"
            if not path.exists():
                return path

    def _atomic_write(self, path: Path, data: bytes) -> None:
        """Write to a sibling temp file, fsync, then rename over the target."""
        temp_path = path.with_name(path.name + TEMP_SUFFIX)
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StoreError("Failed to write encrypted file.") from e
        _fsync_directory(path.parent)

    def write(self, data: bytes) -> Path:
        """
        Store a new blob.

        Args:
            data: Ciphertext bytes

        Returns:
            Absolute path of the new blob
        """
        self.ensure_root()
        path = self._new_blob_path().resolve()
        self._atomic_write(path, data)
        logger.debug(f"Wrote blob ({len(data):,} bytes)")
        return path

    def read(self, path: Path, entry_id: Optional[int] = None) -> bytes:
        """
        Read a blob.

        Args:
            path: Blob path
            entry_id: Catalog entry the blob belongs to (for error reporting)

        Raises:
            BlobMissingError: If the blob does not exist
            VaultIOError: On any other read failure
        """
        path = self._scoped(path)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobMissingError(entry_id) from None
        except OSError as e:
            raise VaultIOError("Failed to read encrypted file.") from e

    def exists(self, path: Path) -> bool:
        """Check if a blob exists."""
        return self._scoped(path).is_file()

    def replace(self, path: Path, data: bytes) -> None:
        """Atomically rewrite an existing blob in place."""
        self._atomic_write(self._scoped(path), data)

    def delete(self, path: Path) -> bool:
        """
        Delete a blob. A missing blob counts as success.

        Returns:
            True if a file was removed
        """
        path = self._scoped(path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreError("Failed to delete encrypted file.") from e
        return True

    # ===================
    # Rotation backups
    # ===================

    def backup_path(self, path: Path) -> Path:
        """Path of the pre-rotation copy of a blob."""
        path = self._scoped(path)
        return path.with_name(path.name + BACKUP_SUFFIX)

    def backup(self, path: Path, entry_id: Optional[int] = None) -> Path:
        """Atomically copy a blob to its backup path."""
        backup_path = self.backup_path(path)
        self._atomic_write(backup_path, self.read(path, entry_id))
        return backup_path

    def has_backup(self, path: Path) -> bool:
        """Check if a backup exists for a blob."""
        return self.backup_path(path).is_file()

    def restore(self, path: Path) -> bool:
        """
        Put a blob's backup back in place.

        Returns:
            True if a backup was restored
        """
        backup_path = self.backup_path(path)
        if not backup_path.is_file():
            return False
        try:
            os.replace(backup_path, path)
        except OSError as e:
            raise StoreError("Failed to restore encrypted file.") from e
        _fsync_directory(self.root)
        return True

    def discard_backup(self, path: Path) -> None:
        """Remove a blob's backup if present."""
        try:
            self.backup_path(path).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError("Failed to remove backup file.") from e

    def cleanup_temp_files(self) -> int:
        """
        Remove temp files left behind by an interrupted write.

        Returns:
            Number of files removed
        """
        if not self.root.is_dir():
            return 0
        removed = 0
        for temp_path in self.root.glob(f"*{TEMP_SUFFIX}"):
            try:
                temp_path.unlink()
                removed += 1
            except OSError:
                logger.warning("Could not remove a leftover temp file")
        return removed

    # ===================
    # Disk space
    # ===================

    def _disk_usage(self):
        try:
            return shutil.disk_usage(self.ensure_root())
        except OSError as e:
            raise VaultIOError("Failed to query disk space.") from e

    def free_bytes(self) -> int:
        """Free bytes on the filesystem holding the blob directory."""
        return self._disk_usage().free

    def total_bytes(self) -> int:
        """Total size of the filesystem holding the blob directory."""
        return self._disk_usage().total
