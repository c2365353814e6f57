"""Vault manager for high-level vault operations.

Binds the crypto primitives, the catalog and the blob store: authentication,
adding, retrieving and deleting files, listing and searching, free-space
accounting and password changes.
"""

import functools
import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..utils import format_size
from ..utils.logging import get_logger
from .blob_store import BlobStore
from .catalog import CatalogDB
from .config import VaultConfig
from .crypto import EnvelopeCipher, KeyDerivation
from .exceptions import (
    BadCredentialsError,
    InsufficientSpaceError,
    NameTakenError,
    StoreError,
    VaultError,
    VaultIOError,
)
from .models import FileEntry, Operator, file_stem
from .rotation import ProgressCallback, recover_interrupted_rotation, rotate_password
from .session import VaultSession

logger = get_logger(__name__)


@dataclass
class VaultStats:
    """File count and total plaintext size of the vault."""

    file_count: int
    total_original_bytes: int

    @property
    def total_size_display(self) -> str:
        return format_size(self.total_original_bytes)


@dataclass
class SpaceStatus:
    """Disk space on the filesystem holding the vault."""

    free_bytes: int
    total_bytes: int
    usage_fraction: float
    has_min: bool
    has_recommended: bool

    @property
    def free_display(self) -> str:
        return format_size(self.free_bytes)

    @property
    def total_display(self) -> str:
        return format_size(self.total_bytes)


def _synchronized(method: Callable) -> Callable:
    """Run a method while holding the manager's lock."""

    @functools.wraps(method)
    def wrapper(self: "VaultManager", *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class VaultManager:
    """
    Manages the operator session and every file operation of a vault.

    Usage:
        with VaultManager() as vm:
            vm.initialize()
            vm.login("admin", "admin123")

            entry = vm.add(Path("report.pdf"), description="Q3")
            vm.retrieve(entry, Path("restored"))

    Calls are serialized with a single lock. The session key is wiped on
    lock(), when leaving a ``with`` block, and at interpreter exit.
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        catalog: Optional[CatalogDB] = None,
        blob_store: Optional[BlobStore] = None,
    ):
        """
        Initialize the vault manager.

        Args:
            config: Vault configuration (built from the user-home directory if not provided)
            catalog: Catalog handle (created from the config if not provided)
            blob_store: Blob store handle (created from the config if not provided)
        """
        self.config = config or VaultConfig.from_env()
        self.catalog = catalog or CatalogDB(self.config.db_path, self.config)
        self.blob_store = blob_store or BlobStore(self.config.files_dir, self.config)
        self._session = VaultSession(timeout_minutes=self.config.session_timeout_minutes)
        self._lock = threading.RLock()
        self._finalizer = weakref.finalize(self, self._session.lock)

    def __enter__(self) -> "VaultManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @_synchronized
    def close(self) -> None:
        """Lock the vault and release the catalog."""
        self._session.lock()
        self.catalog.close()

    # ===================
    # Setup and session
    # ===================

    @_synchronized
    def initialize(self) -> Optional[str]:
        """
        Create the vault directories and catalog, then finish any
        interrupted password change.

        Returns:
            Outcome of rotation recovery ("committed", "rolled back"), or None
        """
        self.blob_store.ensure_root()
        self.catalog.initialize()
        outcome = recover_interrupted_rotation(
            self.catalog, self.blob_store, self.config.journal_path
        )
        removed = self.blob_store.cleanup_temp_files()
        if removed:
            logger.info(f"Removed {removed} leftover temp files")
        return outcome

    @property
    def is_unlocked(self) -> bool:
        """Check if a session key is held and has not expired."""
        return self._session.is_unlocked and not self._session.is_expired()

    @property
    def operator_id(self) -> Optional[int]:
        """ID of the operator who unlocked the session, if any."""
        return self._session.operator_id

    @_synchronized
    def authenticate(self, username: str, password: str) -> Operator:
        """
        Check operator credentials.

        Raises:
            BadCredentialsError: If the name is unknown or the password is wrong
        """
        operator = self.catalog.authenticate(username, password)
        if operator is None:
            logger.warning("Authentication failed")
            raise BadCredentialsError()
        logger.info(f"Operator {operator.id} authenticated")
        return operator

    @_synchronized
    def unlock(self, password: str, salt: str, operator_id: Optional[int] = None) -> None:
        """
        Derive the session key from a password and salt.

        The password is not verified here; use authenticate() or login()
        for that.
        """
        key = KeyDerivation.derive_key(password, salt, self.config.pbkdf2_iterations)
        self._session.unlock(key, operator_id)
        logger.debug("Vault unlocked")

    @_synchronized
    def login(self, username: str, password: str) -> Operator:
        """Authenticate, then unlock with the operator's salt."""
        operator = self.authenticate(username, password)
        self.unlock(password, operator.salt, operator.id)
        return operator

    @_synchronized
    def lock(self) -> bool:
        """
        Zero and discard the session key.

        Returns:
            True if a key was held
        """
        locked = self._session.lock()
        if locked:
            logger.debug("Vault locked")
        return locked

    @_synchronized
    def current_operator(self) -> Optional[Operator]:
        """The operator of the current session, else the active operator."""
        if self._session.operator_id is not None:
            return self.catalog.get_operator(self._session.operator_id)
        return self.catalog.get_active_operator()

    # ===================
    # Files
    # ===================

    def _required_space(self, size: int) -> float:
        return size * self.config.space_overhead_factor + self.config.metadata_overhead_bytes

    @_synchronized
    def can_store(self, size: int) -> bool:
        """Check if a file of the given size passes the free-space policy."""
        return self.blob_store.free_bytes() >= self._required_space(size)

    @_synchronized
    def add(self, source_path: Path, description: str = "", tags: str = "") -> FileEntry:
        """
        Encrypt a file into the vault.

        Args:
            source_path: File to store
            description: Free-text description
            tags: Free-text tags

        Returns:
            The new catalog entry

        Raises:
            VaultLockedError: If the vault is locked
            VaultIOError: If the source is not a readable regular file
            InsufficientSpaceError: If the free-space policy rejects the file
            StoreError: If the blob or the catalog row cannot be written
        """
        key = self._session.key
        source_path = Path(source_path)

        if not source_path.is_file():
            raise VaultIOError("Source is not a regular file.")
        try:
            size = source_path.stat().st_size
        except OSError as e:
            raise VaultIOError() from e

        available = self.blob_store.free_bytes()
        required = self._required_space(size)
        if available < required:
            raise InsufficientSpaceError(int(required), available)

        try:
            data = source_path.read_bytes()
        except OSError as e:
            raise VaultIOError() from e

        blob_path = self.blob_store.write(EnvelopeCipher(key).encrypt(data))
        entry = FileEntry.create(
            original_name=source_path.name,
            blob_path=blob_path,
            file_size=len(data),
            description=description,
            tags=tags,
        )
        try:
            self.catalog.insert_file_entry(entry)
        except VaultError:
            try:
                self.blob_store.delete(blob_path)
            except StoreError:
                logger.warning("Could not remove blob after failed catalog insert")
            raise

        logger.info(f"Added entry {entry.id} ({len(data):,} bytes)")
        return entry

    def _unique_output_path(self, output_dir: Path, filename: str) -> Path:
        """output_dir/filename, or name_1.ext, name_2.ext, ... if taken."""
        candidate = output_dir / filename
        stem = file_stem(filename)
        suffix = filename[len(stem):]
        counter = 1
        while candidate.exists():
            candidate = output_dir / f"{stem}_{counter}{suffix}"
            counter += 1
        return candidate

    @_synchronized
    def retrieve(self, entry: FileEntry, output_dir: Path) -> Path:
        """
        Decrypt an entry into a directory.

        Nothing is written unless decryption succeeds. A failed decryption
        is final; no other key is tried.

        Args:
            entry: Entry to restore
            output_dir: Directory to write the file into

        Returns:
            Path of the written file

        Raises:
            VaultLockedError: If the vault is locked
            BlobMissingError: If the blob is gone
            DecryptionError: If the blob does not decrypt under the session key
            VaultIOError: If the output cannot be written
        """
        key = self._session.key
        ciphertext = self.blob_store.read(entry.blob_path, entry.id)
        plaintext = EnvelopeCipher(key).decrypt(ciphertext)

        output_dir = Path(output_dir)
        filename = Path(entry.original_name).name
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            output_path = self._unique_output_path(output_dir, filename)
            with open(output_path, "xb") as f:
                f.write(plaintext)
        except OSError as e:
            raise VaultIOError() from e

        logger.info(f"Retrieved entry {entry.id}")
        return output_path

    @_synchronized
    def delete(self, entry: FileEntry) -> bool:
        """
        Delete an entry's blob, then its catalog row.

        A missing blob is tolerated.

        Returns:
            True if the catalog row was removed
        """
        self.blob_store.delete(entry.blob_path)
        removed = self.catalog.delete_file_entry(entry.id)
        if removed:
            logger.info(f"Deleted entry {entry.id}")
        return removed

    @_synchronized
    def get(self, entry_id: int) -> Optional[FileEntry]:
        """Get a single entry by ID."""
        return self.catalog.get_file_entry(entry_id)

    @_synchronized
    def list_files(self) -> list[FileEntry]:
        """All entries, newest first."""
        return self.catalog.list_files()

    @_synchronized
    def search(self, term: str) -> list[FileEntry]:
        """Entries whose name, tags or description contain a term (case-insensitive)."""
        return self.catalog.search_files(term)

    # ===================
    # Statistics
    # ===================

    @_synchronized
    def stats(self) -> VaultStats:
        """Number of files and total plaintext bytes."""
        return VaultStats(
            file_count=self.catalog.count_files(),
            total_original_bytes=self.catalog.total_original_bytes(),
        )

    @_synchronized
    def space_status(self) -> SpaceStatus:
        """
        Disk space against what the stored files need.

        has_min: free space covers the stored files with overhead plus a
        100 MiB buffer. has_recommended: free space is at least 1.5 times the
        stored files with overhead.
        """
        free = self.blob_store.free_bytes()
        total = self.blob_store.total_bytes()
        needed = self.catalog.total_original_bytes() * self.config.space_overhead_factor
        return SpaceStatus(
            free_bytes=free,
            total_bytes=total,
            usage_fraction=(total - free) / total if total else 0.0,
            has_min=free >= needed + self.config.minimum_buffer_bytes,
            has_recommended=free >= needed * self.config.recommended_factor,
        )

    # ===================
    # Credentials
    # ===================

    def _validate_name(self, new_name: str) -> str:
        new_name = new_name.strip()
        if len(new_name) < self.config.min_username_length:
            raise ValueError(
                f"Username must be at least {self.config.min_username_length} characters"
            )
        return new_name

    def _require_operator(self) -> Operator:
        operator = self.current_operator()
        if operator is None:
            raise BadCredentialsError()
        return operator

    @_synchronized
    def change_password(
        self,
        current_password: str,
        new_password: str,
        new_name: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Operator:
        """
        Change the operator password, re-encrypting every file.

        On success the session holds the key for the new password.

        Args:
            current_password: Current password
            new_password: New password
            new_name: Optional new operator name
            progress_callback: Optional callback(message, current, total)

        Returns:
            The updated operator

        Raises:
            ValueError: If the new credentials break the policy
            BadCredentialsError: If the current password is wrong
            NameTakenError: If new_name is used by another operator
            RotationFailedError: If re-encryption failed (rolled back now or at the next start)
        """
        if len(new_password) < self.config.min_password_length:
            raise ValueError(
                f"Password must be at least {self.config.min_password_length} characters"
            )
        if new_password == current_password:
            raise ValueError("New password must differ from the current password")
        if new_name is not None:
            new_name = self._validate_name(new_name)

        operator = self._require_operator()
        result = rotate_password(
            self.catalog,
            self.blob_store,
            operator.id,
            current_password,
            new_password,
            self.config.journal_path,
            new_name=new_name,
            iterations=self.config.pbkdf2_iterations,
            progress_callback=progress_callback,
        )
        self._session.unlock(result.new_key, result.operator.id)
        logger.info(f"Operator {result.operator.id} rotated credentials")
        return result.operator

    @_synchronized
    def rename_operator(self, current_password: str, new_name: str) -> Operator:
        """
        Change only the operator name. No file is re-encrypted.

        Raises:
            ValueError: If the name is too short
            BadCredentialsError: If the password is wrong
            NameTakenError: If the name is used by another operator
        """
        new_name = self._validate_name(new_name)
        operator = self._require_operator()
        if not KeyDerivation.verify_password(current_password, operator.password_hash, operator.salt):
            raise BadCredentialsError()

        if not self.catalog.update_operator(
            operator.id, new_name, operator.password_hash, operator.salt
        ):
            raise NameTakenError()

        logger.info(f"Operator {operator.id} renamed")
        return self.catalog.get_operator(operator.id)
