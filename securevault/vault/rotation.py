"""Password rotation for the vault.

Changing the operator password re-derives the session key and re-encrypts
every blob under it. The rotation is journaled so that a failure, or a
crash, never leaves a vault split between two keys:

1. Backups left over from an earlier rotation are removed, then a journal
   listing every blob and the new salt is written.
2. Each blob is decrypted with the old key, re-encrypted with the new key,
   backed up (``.bak``) and atomically replaced.
3. The operator's verifier and salt are committed in one transaction.
4. Backups and journal are removed.

Any failure before step 3 restores every backup, so the current password
still opens the vault. A journal found at startup is resolved the same
way: restored if the commit never happened, cleaned up if it did.
"""

import json
import os
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..utils.logging import get_logger
from .blob_store import BlobStore
from .catalog import CatalogDB
from .crypto import PBKDF2_ITERATIONS, EnvelopeCipher, KeyDerivation, wipe
from .exceptions import (
    BadCredentialsError,
    NameTakenError,
    RotationFailedError,
    StoreError,
    VaultError,
)
from .models import Operator

logger = get_logger(__name__)

ProgressCallback = Callable[[str, int, int], None]

INCOMPLETE_MESSAGE = (
    "Password change did not finish. It will be completed the next time the vault is opened."
)


@dataclass
class RotationJournal:
    """Record of an in-flight rotation, persisted next to the catalog."""

    operator_id: int
    new_salt: str
    blob_paths: list[str] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "RotationJournal":
        """Deserialize from JSON string."""
        try:
            data = json.loads(json_str)
            return cls(
                operator_id=data["operator_id"],
                new_salt=data["new_salt"],
                blob_paths=list(data.get("blob_paths", [])),
                started_at=data.get("started_at", ""),
            )
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise StoreError("Rotation journal is unreadable.") from e

    def save(self, path: Path) -> None:
        """Write the journal atomically."""
        temp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(self.to_json())
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StoreError("Failed to write rotation journal.") from e

    @classmethod
    def load(cls, path: Path) -> "RotationJournal":
        """Read a journal from disk."""
        try:
            return cls.from_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StoreError("Rotation journal is unreadable.") from e


@dataclass
class RotationResult:
    """Outcome of a committed rotation."""

    operator: Operator
    new_key: bytearray
    files_rotated: int = 0


def _remove_journal(journal_path: Path) -> None:
    try:
        journal_path.unlink(missing_ok=True)
    except OSError as e:
        raise StoreError("Failed to remove rotation journal.") from e


def _roll_back(blob_store: BlobStore, paths: list[Path]) -> bool:
    """Restore backups of rewritten blobs. Returns False if any restore failed."""
    ok = True
    for path in reversed(paths):
        try:
            blob_store.restore(path)
        except StoreError:
            logger.error("Failed to restore a blob during rollback")
            ok = False
    return ok


def recover_interrupted_rotation(
    catalog: CatalogDB,
    blob_store: BlobStore,
    journal_path: Path,
) -> Optional[str]:
    """
    Finish a rotation that was interrupted by a crash.

    If the operator's salt already equals the journal's new salt, the
    commit happened and only backups are removed. Otherwise every backup
    is restored, returning the vault to the old key.

    Args:
        catalog: Catalog store
        blob_store: Blob store
        journal_path: Rotation journal location

    Returns:
        "committed", "rolled back", or None when there was no journal
    """
    journal_path = Path(journal_path)
    if not journal_path.exists():
        return None

    journal = RotationJournal.load(journal_path)
    operator = catalog.get_operator(journal.operator_id)
    committed = operator is not None and operator.salt == journal.new_salt

    for blob_path in journal.blob_paths:
        if committed:
            blob_store.discard_backup(Path(blob_path))
        else:
            blob_store.restore(Path(blob_path))

    blob_store.cleanup_temp_files()
    _remove_journal(journal_path)

    outcome = "committed" if committed else "rolled back"
    logger.warning(f"Recovered interrupted credential rotation ({outcome}, {len(journal.blob_paths)} files)")
    return outcome


def rotate_password(
    catalog: CatalogDB,
    blob_store: BlobStore,
    operator_id: int,
    current_password: str,
    new_password: str,
    journal_path: Path,
    new_name: Optional[str] = None,
    iterations: int = PBKDF2_ITERATIONS,
    progress_callback: Optional[ProgressCallback] = None,
) -> RotationResult:
    """
    Change the operator password and re-encrypt every blob.

    Args:
        catalog: Catalog store
        blob_store: Blob store
        operator_id: Operator whose password changes
        current_password: Current password
        new_password: New password
        journal_path: Where to keep the rotation journal
        new_name: Optional new operator name, committed with the password
        iterations: PBKDF2 iteration count
        progress_callback: Optional callback(message, current, total)

    Returns:
        RotationResult holding the updated operator and the new session key

    Raises:
        BadCredentialsError: If the current password is wrong
        NameTakenError: If new_name belongs to another operator
        RotationFailedError: If any blob could not be re-encrypted; all blobs
            are restored and the current password still opens the vault
            (if a restore fails too, the journal is kept for the next start)
    """
    journal_path = Path(journal_path)
    recover_interrupted_rotation(catalog, blob_store, journal_path)

    operator = catalog.get_operator(operator_id)
    if operator is None or not operator.is_active:
        raise BadCredentialsError()

    old_key = KeyDerivation.derive_key(current_password, operator.salt, iterations)
    if not KeyDerivation.verify_password(current_password, operator.password_hash, operator.salt):
        wipe(old_key)
        raise BadCredentialsError()

    if new_name is not None and not catalog.is_name_available(new_name, operator.id):
        wipe(old_key)
        raise NameTakenError()

    # Recovery restores every journaled backup, so none may predate this run.
    entries = catalog.list_files()
    try:
        for entry in entries:
            if blob_store.has_backup(entry.blob_path):
                blob_store.discard_backup(entry.blob_path)
    except StoreError as e:
        logger.error("Could not clear a leftover rotation backup")
        wipe(old_key)
        raise RotationFailedError() from e

    new_salt = KeyDerivation.generate_salt()
    new_key = KeyDerivation.derive_key(new_password, new_salt, iterations)
    old_cipher = EnvelopeCipher(old_key)
    new_cipher = EnvelopeCipher(new_key)

    total = len(entries)
    RotationJournal(
        operator_id=operator.id,
        new_salt=new_salt,
        blob_paths=[str(entry.blob_path) for entry in entries],
    ).save(journal_path)
    logger.info(f"Re-encrypting {total} files under new credentials")

    def abort(error: VaultError) -> None:
        restored = _roll_back(blob_store, rewritten)
        wipe(old_key)
        wipe(new_key)
        if not restored:
            # Journal stays; the next initialize() finishes the rollback.
            raise RotationFailedError(getattr(error, "entry_id", None), message=INCOMPLETE_MESSAGE)
        for path in rewritten:
            try:
                blob_store.discard_backup(path)
            except StoreError:
                logger.warning("Could not remove a rotation backup")
        _remove_journal(journal_path)
        raise error

    rewritten: list[Path] = []
    for i, entry in enumerate(entries, 1):
        if progress_callback:
            progress_callback(f"Re-encrypting {entry.original_name}", i, total)
        try:
            ciphertext = blob_store.read(entry.blob_path, entry.id)
            reencrypted = new_cipher.encrypt(old_cipher.decrypt(ciphertext))
            blob_store.backup(entry.blob_path, entry.id)
            rewritten.append(entry.blob_path)
            blob_store.replace(entry.blob_path, reencrypted)
        except VaultError as e:
            logger.error(f"Re-encryption failed at entry {entry.id}: {type(e).__name__}")
            try:
                abort(RotationFailedError(entry.id))
            except RotationFailedError as failure:
                raise failure from e

    new_hash = KeyDerivation.hash_password(new_password, new_salt)
    try:
        committed = catalog.update_operator(operator.id, new_name, new_hash, new_salt)
    except StoreError as e:
        logger.error("Credential update failed; restoring previous encryption")
        try:
            abort(RotationFailedError())
        except RotationFailedError as failure:
            raise failure from e
    if not committed:
        logger.error("Credential update rejected; restoring previous encryption")
        abort(NameTakenError())

    for path in rewritten:
        try:
            blob_store.discard_backup(path)
        except StoreError:
            logger.warning("Could not remove a rotation backup")
    _remove_journal(journal_path)
    wipe(old_key)

    updated = catalog.get_operator(operator.id)
    logger.info(f"Credentials rotated; {len(rewritten)} files re-encrypted")
    return RotationResult(operator=updated, new_key=new_key, files_rotated=len(rewritten))
