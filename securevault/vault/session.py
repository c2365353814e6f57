"""Session management for vault encryption.

Holds the derived session key in memory between unlock and lock. The key
lives in a mutable buffer that is overwritten with zeros when the session
ends, so it does not linger in memory after lock.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from .crypto import KEY_SIZE, wipe
from .exceptions import SessionExpiredError, VaultLockedError


@dataclass
class VaultSession:
    """Active vault session with the cached derived key."""

    _key: Optional[bytearray] = None
    operator_id: Optional[int] = None
    unlocked_at: Optional[datetime] = None
    last_access: datetime = field(default_factory=datetime.now)
    timeout_minutes: int = 0

    @property
    def is_unlocked(self) -> bool:
        """Check if a key is currently held."""
        return self._key is not None

    def is_expired(self) -> bool:
        """Check if session has timed out due to inactivity."""
        if self.timeout_minutes == 0:  # No timeout
            return False
        elapsed = datetime.now() - self.last_access
        return elapsed > timedelta(minutes=self.timeout_minutes)

    def touch(self) -> None:
        """Update last access time to prevent timeout."""
        self.last_access = datetime.now()

    @property
    def key(self) -> bytearray:
        """
        Get the session key.

        Raises:
            VaultLockedError: If no key is set
            SessionExpiredError: If the idle timeout elapsed (the key is wiped)
        """
        if self._key is None:
            raise VaultLockedError()
        if self.is_expired():
            self.lock()
            raise SessionExpiredError()
        self.touch()
        return self._key

    def unlock(self, key: bytearray, operator_id: Optional[int] = None) -> None:
        """Take ownership of a derived key, wiping any previous one."""
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self.lock()
        self._key = key
        self.operator_id = operator_id
        self.unlocked_at = datetime.now()
        self.touch()

    def lock(self) -> bool:
        """
        Zero and discard the key.

        Returns:
            True if a key was held
        """
        if self._key is None:
            return False
        wipe(self._key)
        self._key = None
        self.operator_id = None
        self.unlocked_at = None
        return True
