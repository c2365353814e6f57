"""Unit tests for the blob store."""

import re

import pytest


class TestWriteRead:
    """Tests for blob creation and reading."""

    def test_write_creates_random_name(self, blob_store):
        """Blobs get a 22-character URL-safe name with .enc."""
        path = blob_store.write(b"ciphertext")

        assert path.parent == blob_store.root.resolve()
        assert re.fullmatch(r"[A-Za-z0-9_-]{22}\.enc", path.name)
        assert path.read_bytes() == b"ciphertext"

    def test_names_unique(self, blob_store):
        """Each write picks a new name."""
        paths = {blob_store.write(b"x") for _ in range(20)}
        assert len(paths) == 20

    def test_root_created_on_first_use(self, config):
        """The blob directory and its parents are created on demand."""
        from securevault.vault import BlobStore

        store = BlobStore(config.files_dir, config)
        assert not config.files_dir.exists()

        store.write(b"data")
        assert config.files_dir.is_dir()

    def test_no_temp_file_left(self, blob_store):
        """Atomic writes leave no temp files behind."""
        blob_store.write(b"data")
        assert list(blob_store.root.glob("*.tmp")) == []

    def test_read_missing(self, blob_store):
        """Reading an absent blob raises BlobMissingError with the entry ID."""
        from securevault.vault.exceptions import BlobMissingError

        with pytest.raises(BlobMissingError) as exc_info:
            blob_store.read(blob_store.root / "absent.enc", entry_id=7)
        assert exc_info.value.entry_id == 7

    def test_write_failure_is_store_error(self, blob_store, monkeypatch):
        """I/O errors during a write surface as StoreError."""
        from securevault.vault import blob_store as blob_module
        from securevault.vault.exceptions import StoreError

        def broken_replace(src, dst):
            raise OSError("disk full at /secret/location")

        monkeypatch.setattr(blob_module.os, "replace", broken_replace)

        with pytest.raises(StoreError) as exc_info:
            blob_store.write(b"data")
        assert "/secret" not in str(exc_info.value)
        assert list(blob_store.root.glob("*.tmp")) == []


class TestScoping:
    """Tests for path scoping."""

    def test_rejects_outside_paths(self, blob_store, tmp_path):
        """Paths outside the blob directory are refused."""
        from securevault.vault.exceptions import StoreError

        outside = tmp_path / "elsewhere.enc"
        outside.write_bytes(b"x")

        with pytest.raises(StoreError):
            blob_store.read(outside)
        with pytest.raises(StoreError):
            blob_store.delete(outside)
        assert outside.exists()

    def test_rejects_traversal(self, blob_store):
        """Relative escapes are refused."""
        from securevault.vault.exceptions import StoreError

        with pytest.raises(StoreError):
            blob_store.read(blob_store.root / ".." / "vault.db")


class TestDelete:
    """Tests for blob deletion."""

    def test_delete(self, blob_store):
        """Delete removes the blob."""
        path = blob_store.write(b"data")

        assert blob_store.delete(path)
        assert not path.exists()

    def test_delete_idempotent(self, blob_store):
        """Deleting a missing blob is not an error."""
        path = blob_store.write(b"data")
        blob_store.delete(path)

        assert blob_store.delete(path) is False


class TestBackups:
    """Tests for rotation backups."""

    def test_backup_restore(self, blob_store):
        """A restored backup brings back the original bytes."""
        path = blob_store.write(b"old")
        blob_store.backup(path)
        blob_store.replace(path, b"new")

        assert path.read_bytes() == b"new"
        assert blob_store.has_backup(path)

        assert blob_store.restore(path)
        assert path.read_bytes() == b"old"
        assert not blob_store.has_backup(path)

    def test_restore_without_backup(self, blob_store):
        """Restoring with no backup is a no-op."""
        path = blob_store.write(b"data")

        assert not blob_store.restore(path)
        assert path.read_bytes() == b"data"

    def test_discard_backup(self, blob_store):
        """Discarding removes only the backup."""
        path = blob_store.write(b"data")
        blob_store.backup(path)
        blob_store.discard_backup(path)

        assert not blob_store.has_backup(path)
        assert path.read_bytes() == b"data"

    def test_cleanup_temp_files(self, blob_store):
        """Leftover temp files are removed, blobs are kept."""
        path = blob_store.write(b"data")
        (blob_store.root / "stale.enc.tmp").write_bytes(b"partial")

        assert blob_store.cleanup_temp_files() == 1
        assert path.exists()


class TestDiskSpace:
    """Tests for free-space queries."""

    def test_free_and_total(self, blob_store):
        """Free space is positive and no larger than the filesystem."""
        free = blob_store.free_bytes()
        total = blob_store.total_bytes()

        assert 0 < free <= total
