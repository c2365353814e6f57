"""Shared pytest fixtures for SecureVault tests."""

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def home_dir(tmp_path: Path, monkeypatch) -> Path:
    """Point the user-home directory at a temp dir so no test touches the real vault."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home


@pytest.fixture
def config(home_dir: Path):
    """Vault configuration rooted in the temp home directory."""
    from securevault.vault import VaultConfig

    return VaultConfig(home_dir=home_dir)


@pytest.fixture
def catalog(config):
    """Initialized catalog with the default operator."""
    from securevault.vault import CatalogDB

    db = CatalogDB(config.db_path, config)
    db.initialize()
    return db


@pytest.fixture
def blob_store(config):
    """Blob store rooted in the temp vault directory."""
    from securevault.vault import BlobStore

    store = BlobStore(config.files_dir, config)
    store.ensure_root()
    return store


@pytest.fixture
def key() -> bytearray:
    """A fixed 256-bit key."""
    from securevault.vault import KeyDerivation

    return KeyDerivation.derive_key("admin123", KeyDerivation.generate_salt())


@pytest.fixture
def vault(config):
    """Initialized vault manager, locked."""
    from securevault.vault import VaultManager

    vm = VaultManager(config)
    vm.initialize()
    yield vm
    vm.close()


@pytest.fixture
def unlocked_vault(vault):
    """Vault manager logged in as the default operator."""
    vault.login("admin", "admin123")
    return vault


@pytest.fixture
def pattern_bytes() -> bytes:
    """1024 bytes: 0x00..0xFF repeated four times."""
    return bytes(range(256)) * 4


@pytest.fixture
def sample_file(tmp_path: Path, pattern_bytes: bytes) -> Path:
    """A 1024-byte source file."""
    path = tmp_path / "source" / "pattern.bin"
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(pattern_bytes)
    return path


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Directory for retrieved files (not created up front)."""
    return tmp_path / "restored"


@pytest.fixture
def make_file(tmp_path: Path):
    """Factory that writes a source file and returns its path."""
    source_dir = tmp_path / "source"
    source_dir.mkdir(exist_ok=True)

    def _make(name: str, content: bytes) -> Path:
        path = source_dir / name
        path.write_bytes(content)
        return path

    return _make
