"""SQLite database operations for the vault catalog.

The catalog holds two tables: the operator record(s) and one row per
stored file. Every operation opens a short-lived connection, runs inside a
single transaction that commits only on success, and retries with
exponential backoff when SQLite reports the database as locked or busy.
"""

import base64
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, TypeVar

from ..utils.logging import get_logger
from .config import VaultConfig
from .crypto import KeyDerivation
from .exceptions import StoreError
from .models import FileEntry, Operator

logger = get_logger(__name__)

T = TypeVar("T")


SCHEMA_SQL = """
-- Operators: the credential holder(s); passwords are never stored
CREATE TABLE IF NOT EXISTS operators (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    salt TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_login TEXT,
    is_active INTEGER NOT NULL DEFAULT 1
);

-- File entries: one row per encrypted blob
CREATE TABLE IF NOT EXISTS file_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    original_name TEXT NOT NULL,
    blob_path TEXT NOT NULL,
    file_type TEXT,
    file_size INTEGER,
    date_added TEXT NOT NULL,
    description TEXT,
    tags TEXT
);

CREATE INDEX IF NOT EXISTS idx_file_entries_added ON file_entries(date_added);
"""

# Verified against when the operator name is unknown, so an unknown name
# costs the same as a wrong password.
_DUMMY_SALT = base64.b64encode(bytes(32)).decode("ascii")
_DUMMY_HASH = base64.b64encode(bytes(32)).decode("ascii")

_FILE_COLUMNS = (
    "id, original_name, blob_path, file_type, file_size, date_added, description, tags"
)


def _is_busy(error: sqlite3.OperationalError) -> bool:
    """Check whether an OperationalError is a transient lock condition."""
    message = str(error).lower()
    return "locked" in message or "busy" in message


def _escape_like(term: str) -> str:
    """Escape LIKE wildcards so the term matches as a plain substring."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CatalogDB:
    """Database manager for the catalog SQLite database."""

    def __init__(self, db_path: Path, config: Optional[VaultConfig] = None):
        """Initialize the catalog.

        Args:
            db_path: Path to the SQLite database file
            config: Vault configuration (defaults are used if not provided)
        """
        self.db_path = Path(db_path)
        self.config = config or VaultConfig()

    # ===================
    # Connection handling
    # ===================

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.config.store_connect_timeout,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, write: bool) -> Iterator[sqlite3.Connection]:
        """Open a connection and run a transaction that commits only on success."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _run(
        self,
        operation: Callable[[sqlite3.Connection], T],
        description: str,
        write: bool = False,
    ) -> T:
        """Run an operation in a transaction, retrying while the store is busy.

        Args:
            operation: Callable receiving the open connection
            description: Short name of the operation for logs
            write: Take the write lock at the start of the transaction

        Returns:
            Whatever the operation returns

        Raises:
            StoreError: On a non-transient error or when retries are exhausted
        """
        attempts = self.config.store_retry_attempts
        delay = self.config.store_retry_base_delay

        for attempt in range(1, attempts + 1):
            try:
                with self._transaction(write) as conn:
                    return operation(conn)
            except sqlite3.OperationalError as e:
                if not _is_busy(e):
                    logger.error(f"Catalog {description} failed: {type(e).__name__}")
                    raise StoreError() from e
                if attempt == attempts:
                    logger.error(f"Catalog {description} still busy after {attempts} attempts")
                    raise StoreError() from e
                logger.warning(
                    f"Catalog busy during {description}, retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{attempts})"
                )
                time.sleep(delay)
                delay *= 2
            except sqlite3.Error as e:
                logger.error(f"Catalog {description} failed: {type(e).__name__}")
                raise StoreError() from e

        raise StoreError()

    def close(self) -> None:
        """Nothing to release; connections are opened per operation."""

    # ===================
    # Schema
    # ===================

    def initialize(self) -> None:
        """Create the tables if absent and seed the default operator.

        The seed operator is only created when no operator exists at all.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError() from e

        conn = self._connect()
        try:
            conn.executescript(SCHEMA_SQL)
        except sqlite3.Error as e:
            raise StoreError() from e
        finally:
            conn.close()

        def seed(conn: sqlite3.Connection) -> bool:
            count = conn.execute("SELECT COUNT(*) FROM operators").fetchone()[0]
            if count:
                return False
            salt = KeyDerivation.generate_salt(self.config.salt_size)
            conn.execute(
                """
                INSERT INTO operators (username, password_hash, salt, created_at, is_active)
                VALUES (?, ?, ?, ?, 1)
                """,
                (
                    self.config.default_operator,
                    KeyDerivation.hash_password(self.config.default_password, salt),
                    salt,
                    datetime.now().isoformat(),
                ),
            )
            return True

        if self._run(seed, "seed", write=True):
            logger.info("Created default operator")

    def is_initialized(self) -> bool:
        """Check if the catalog tables exist."""
        if not self.db_path.exists():
            return False
        return self._run(
            lambda conn: conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='operators'"
            ).fetchone()
            is not None,
            "schema check",
        )

    # ===================
    # Operators
    # ===================

    def authenticate(self, username: str, password: str) -> Optional[Operator]:
        """
        Check an operator name and password.

        On success the last-login time is updated; a failure to record it is
        logged and otherwise ignored.

        Args:
            username: Operator name
            password: Password to verify

        Returns:
            The operator, or None if the name is unknown or the password is wrong
        """
        row = self._run(
            lambda conn: conn.execute(
                "SELECT * FROM operators WHERE username = ? AND is_active = 1",
                (username,),
            ).fetchone(),
            "authenticate",
        )

        if row is None:
            KeyDerivation.verify_password(password, _DUMMY_HASH, _DUMMY_SALT)
            return None

        if not KeyDerivation.verify_password(password, row["password_hash"], row["salt"]):
            return None

        operator = self._row_to_operator(row)
        now = datetime.now()
        try:
            self._run(
                lambda conn: conn.execute(
                    "UPDATE operators SET last_login = ? WHERE id = ?",
                    (now.isoformat(), operator.id),
                ),
                "last-login update",
                write=True,
            )
            operator.last_login = now
        except StoreError:
            logger.warning("Failed to update last login")

        return operator

    def get_operator(self, operator_id: int) -> Optional[Operator]:
        """Get an operator by ID."""
        row = self._run(
            lambda conn: conn.execute(
                "SELECT * FROM operators WHERE id = ?", (operator_id,)
            ).fetchone(),
            "get operator",
        )
        return self._row_to_operator(row) if row else None

    def get_active_operator(self) -> Optional[Operator]:
        """Get the active operator (lowest ID if several are active)."""
        row = self._run(
            lambda conn: conn.execute(
                "SELECT * FROM operators WHERE is_active = 1 ORDER BY id LIMIT 1"
            ).fetchone(),
            "get active operator",
        )
        return self._row_to_operator(row) if row else None

    def is_name_available(self, username: str, exclude_id: Optional[int] = None) -> bool:
        """Check that no other operator uses a name."""
        row = self._run(
            lambda conn: conn.execute(
                "SELECT id FROM operators WHERE username = ? AND id != ?",
                (username, exclude_id if exclude_id is not None else -1),
            ).fetchone(),
            "name check",
        )
        return row is None

    def update_operator(
        self,
        operator_id: int,
        new_name: Optional[str],
        new_password_hash: str,
        new_salt: str,
    ) -> bool:
        """
        Rewrite an operator's name, verifier and salt in one transaction.

        Args:
            operator_id: Operator to update
            new_name: New name, or None to keep the current one
            new_password_hash: New verifier
            new_salt: New salt

        Returns:
            False if the name is taken by another operator or the operator
            does not exist, True once all fields are committed
        """

        def update(conn: sqlite3.Connection) -> bool:
            if new_name is not None:
                taken = conn.execute(
                    "SELECT id FROM operators WHERE username = ? AND id != ?",
                    (new_name, operator_id),
                ).fetchone()
                if taken is not None:
                    return False
                cursor = conn.execute(
                    "UPDATE operators SET username = ?, password_hash = ?, salt = ? WHERE id = ?",
                    (new_name, new_password_hash, new_salt, operator_id),
                )
            else:
                cursor = conn.execute(
                    "UPDATE operators SET password_hash = ?, salt = ? WHERE id = ?",
                    (new_password_hash, new_salt, operator_id),
                )
            return cursor.rowcount > 0

        try:
            return self._run(update, "operator update", write=True)
        except StoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                return False
            raise

    def _row_to_operator(self, row: sqlite3.Row) -> Operator:
        """Convert a database row to an Operator."""
        return Operator(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            salt=row["salt"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_login=datetime.fromisoformat(row["last_login"]) if row["last_login"] else None,
            is_active=bool(row["is_active"]),
        )

    # ===================
    # File entries
    # ===================

    def insert_file_entry(self, entry: FileEntry) -> int:
        """Add a file entry and return its new ID (also set on the entry)."""
        entry_id = self._run(
            lambda conn: conn.execute(
                """
                INSERT INTO file_entries (
                    original_name, blob_path, file_type, file_size,
                    date_added, description, tags
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.original_name,
                    str(entry.blob_path),
                    entry.file_type,
                    entry.file_size,
                    entry.date_added.isoformat(),
                    entry.description,
                    entry.tags,
                ),
            ).lastrowid,
            "insert file entry",
            write=True,
        )
        entry.id = entry_id
        return entry_id

    def get_file_entry(self, entry_id: int) -> Optional[FileEntry]:
        """Get a single file entry by ID."""
        row = self._run(
            lambda conn: conn.execute(
                f"SELECT {_FILE_COLUMNS} FROM file_entries WHERE id = ?", (entry_id,)
            ).fetchone(),
            "get file entry",
        )
        return self._row_to_entry(row) if row else None

    def list_files(self) -> list[FileEntry]:
        """Get all file entries, newest first."""
        rows = self._run(
            lambda conn: conn.execute(
                f"SELECT {_FILE_COLUMNS} FROM file_entries ORDER BY date_added DESC, id DESC"
            ).fetchall(),
            "list files",
        )
        return [self._row_to_entry(row) for row in rows]

    def search_files(self, term: str) -> list[FileEntry]:
        """
        Find entries whose name, tags or description contain a term.

        Matching is a substring match using SQL LIKE, so it is
        case-insensitive for ASCII letters. Wildcard characters in the term
        match literally.

        Args:
            term: Substring to look for

        Returns:
            Matching entries, newest first
        """
        pattern = f"%{_escape_like(term)}%"
        rows = self._run(
            lambda conn: conn.execute(
                f"""
                SELECT {_FILE_COLUMNS} FROM file_entries
                WHERE original_name LIKE ? ESCAPE '\\'
                   OR tags LIKE ? ESCAPE '\\'
                   OR description LIKE ? ESCAPE '\\'
                ORDER BY date_added DESC, id DESC
                """,
                (pattern, pattern, pattern),
            ).fetchall(),
            "search files",
        )
        return [self._row_to_entry(row) for row in rows]

    def delete_file_entry(self, entry_id: int) -> bool:
        """Delete a file entry; True iff a row was removed."""
        removed = self._run(
            lambda conn: conn.execute(
                "DELETE FROM file_entries WHERE id = ?", (entry_id,)
            ).rowcount,
            "delete file entry",
            write=True,
        )
        return removed > 0

    def count_files(self) -> int:
        """Get total number of file entries."""
        return self._run(
            lambda conn: conn.execute("SELECT COUNT(*) FROM file_entries").fetchone()[0],
            "count files",
        )

    def total_original_bytes(self) -> int:
        """Sum of the declared original sizes of all entries."""
        return self._run(
            lambda conn: conn.execute(
                "SELECT COALESCE(SUM(file_size), 0) FROM file_entries"
            ).fetchone()[0],
            "total size",
        )

    def _row_to_entry(self, row: sqlite3.Row) -> FileEntry:
        """Convert a database row to a FileEntry."""
        return FileEntry(
            id=row["id"],
            original_name=row["original_name"],
            blob_path=Path(row["blob_path"]),
            file_type=row["file_type"] or "",
            file_size=row["file_size"] or 0,
            date_added=datetime.fromisoformat(row["date_added"]),
            description=row["description"] or "",
            tags=row["tags"] or "",
        )
