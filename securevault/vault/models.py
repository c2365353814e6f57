"""Data models for the vault catalog."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


def file_extension(filename: str) -> str:
    """Lowercased extension without the dot, or "" when there is none.

    A leading dot (".bashrc") or a trailing dot ("notes.") does not count.
    """
    last_dot = filename.rfind(".")
    if 0 < last_dot < len(filename) - 1:
        return filename[last_dot + 1:].lower()
    return ""


def file_stem(filename: str) -> str:
    """Filename with its last extension removed."""
    last_dot = filename.rfind(".")
    if last_dot > 0:
        return filename[:last_dot]
    return filename


@dataclass
class Operator:
    """The credential holder of a vault.

    The password itself is never stored; only its salted verifier.
    """

    id: int
    username: str
    password_hash: str
    salt: str
    created_at: datetime = field(default_factory=datetime.now)
    last_login: Optional[datetime] = None
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary without credential material."""
        return {
            "id": self.id,
            "username": self.username,
            "created_at": self.created_at.isoformat(),
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "is_active": self.is_active,
        }


@dataclass
class FileEntry:
    """Catalog row binding an original filename and metadata to a blob."""

    original_name: str
    blob_path: Path
    file_size: int
    file_type: str = ""
    date_added: datetime = field(default_factory=datetime.now)
    description: str = ""
    tags: str = ""
    id: Optional[int] = None

    @classmethod
    def create(
        cls,
        original_name: str,
        blob_path: Path,
        file_size: int,
        description: str = "",
        tags: str = "",
    ) -> "FileEntry":
        """Create a new, not yet stored entry stamped with the current time."""
        return cls(
            original_name=original_name,
            blob_path=Path(blob_path),
            file_size=file_size,
            file_type=file_extension(original_name),
            date_added=datetime.now(),
            description=description or "",
            tags=tags or "",
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display or JSON output."""
        return {
            "id": self.id,
            "original_name": self.original_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "date_added": self.date_added.isoformat(),
            "description": self.description,
            "tags": self.tags,
        }
