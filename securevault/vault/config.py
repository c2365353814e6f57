"""Vault configuration for SecureVault."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class VaultConfig:
    """Configuration for vault storage and encryption operations."""

    # Location
    home_dir: Path = field(default_factory=Path.home)
    vault_dirname: str = ".securevault"
    files_dirname: str = "files"
    db_filename: str = "vault.db"
    journal_filename: str = "rotation.journal"
    encrypted_extension: str = ".enc"

    # Key derivation and envelope
    pbkdf2_iterations: int = 10_000
    salt_size: int = 32  # 256 bits
    key_size: int = 32  # 256 bits for AES-256
    iv_size: int = 16
    blob_name_bytes: int = 16

    # Space policy
    space_overhead_factor: float = 1.2  # encryption + metadata overhead
    metadata_overhead_bytes: int = 1024
    minimum_buffer_bytes: int = 100 * 1024 * 1024  # 100MB
    recommended_factor: float = 1.5

    # Catalog retry on "store busy"
    store_retry_attempts: int = 3
    store_retry_base_delay: float = 0.1  # seconds, doubled per retry
    store_connect_timeout: float = 0.1

    # Seed operator created on first initialization
    default_operator: str = "admin"
    default_password: str = "admin123"

    # Credential policy for password changes
    min_password_length: int = 6
    min_username_length: int = 3

    # Session management
    session_timeout_minutes: int = 0  # 0 = no timeout

    def __post_init__(self) -> None:
        self.home_dir = Path(self.home_dir)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """
        Load configuration from the OS environment.

        Only the user-home directory is read (HOME, or USERPROFILE on Windows,
        through Path.home()).
        """
        return cls(home_dir=Path.home())

    @property
    def vault_dir(self) -> Path:
        """Root of all vault state: <home>/.securevault."""
        return self.home_dir / self.vault_dirname

    @property
    def files_dir(self) -> Path:
        """Private blob directory: <home>/.securevault/files."""
        return self.vault_dir / self.files_dirname

    @property
    def db_path(self) -> Path:
        """Catalog database file."""
        return self.vault_dir / self.db_filename

    @property
    def journal_path(self) -> Path:
        """Rotation journal written while a password change is in flight."""
        return self.vault_dir / self.journal_filename
