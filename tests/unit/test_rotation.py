"""Unit tests for password rotation and crash recovery."""

from pathlib import Path

import pytest


class Crash(Exception):
    """Stands in for the process dying mid-operation."""


@pytest.fixture
def stocked_vault(unlocked_vault, make_file):
    """Unlocked vault holding three files; returns (vault, {entry_id: content})."""
    contents = {}
    for i, name in enumerate(("alpha.txt", "beta.bin", "gamma.pdf")):
        data = bytes([i]) * (100 + 37 * i)
        entry = unlocked_vault.add(make_file(name, data))
        contents[entry.id] = data
    return unlocked_vault, contents


def _assert_opens_with(vault, password: str, contents: dict, output_dir: Path) -> None:
    vault.lock()
    vault.login("admin", password)
    for entry in vault.list_files():
        restored = vault.retrieve(entry, output_dir)
        assert restored.read_bytes() == contents[entry.id]


def _leftovers(vault) -> list[Path]:
    files_dir = vault.config.files_dir
    return list(files_dir.glob("*.bak")) + list(files_dir.glob("*.tmp"))


class TestRotatePassword:
    """Tests for the rotation protocol."""

    def test_success(self, stocked_vault, output_dir):
        """Every blob is re-encrypted and the new password opens them."""
        from securevault.vault.exceptions import BadCredentialsError

        vault, contents = stocked_vault
        before = {e.id: e.blob_path.read_bytes() for e in vault.list_files()}

        vault.change_password("admin123", "N3w-pass!")

        for entry in vault.list_files():
            assert entry.blob_path.read_bytes() != before[entry.id]
        assert _leftovers(vault) == []
        assert not vault.config.journal_path.exists()

        with pytest.raises(BadCredentialsError):
            vault.authenticate("admin", "admin123")
        _assert_opens_with(vault, "N3w-pass!", contents, output_dir)

    def test_salt_regenerated(self, stocked_vault):
        """Rotation writes a fresh salt and verifier."""
        vault, _ = stocked_vault
        old = vault.current_operator()

        new = vault.change_password("admin123", "N3w-pass!")

        assert new.salt != old.salt
        assert new.password_hash != old.password_hash

    def test_progress_callback(self, stocked_vault):
        """Progress is reported once per entry."""
        from securevault.vault.rotation import rotate_password

        vault, _ = stocked_vault
        calls = []
        result = rotate_password(
            vault.catalog,
            vault.blob_store,
            vault.operator_id,
            "admin123",
            "N3w-pass!",
            vault.config.journal_path,
            progress_callback=lambda message, current, total: calls.append((current, total)),
        )

        assert calls == [(1, 3), (2, 3), (3, 3)]
        assert result.files_rotated == 3
        assert len(result.new_key) == 32

    def test_empty_vault(self, unlocked_vault):
        """A vault with no files still rotates its credentials."""
        unlocked_vault.change_password("admin123", "N3w-pass!")
        assert unlocked_vault.authenticate("admin", "N3w-pass!")

    def test_wrong_current_password_changes_nothing(self, stocked_vault, output_dir):
        """A bad current password aborts before any blob is touched."""
        from securevault.vault.exceptions import BadCredentialsError

        vault, contents = stocked_vault
        with pytest.raises(BadCredentialsError):
            vault.change_password("not-it", "N3w-pass!")

        assert not vault.config.journal_path.exists()
        _assert_opens_with(vault, "admin123", contents, output_dir)


class TestRollback:
    """Tests for failures during rotation."""

    def test_write_failure_rolls_back(self, stocked_vault, output_dir, monkeypatch):
        """A failed rewrite restores every blob; the old password still works."""
        from securevault.vault.exceptions import RotationFailedError, StoreError

        vault, contents = stocked_vault
        original_replace = vault.blob_store.replace
        calls = {"count": 0}

        def flaky_replace(path, data):
            calls["count"] += 1
            if calls["count"] == 2:
                raise StoreError()
            original_replace(path, data)

        monkeypatch.setattr(vault.blob_store, "replace", flaky_replace)

        with pytest.raises(RotationFailedError) as exc_info:
            vault.change_password("admin123", "N3w-pass!")

        second_entry = vault.list_files()[1]
        assert exc_info.value.entry_id == second_entry.id
        assert _leftovers(vault) == []
        assert not vault.config.journal_path.exists()
        _assert_opens_with(vault, "admin123", contents, output_dir)

    def test_failed_rollback_keeps_journal(self, stocked_vault, config, output_dir, monkeypatch):
        """If a restore fails too, the error says so and startup finishes the rollback."""
        from securevault.vault import VaultManager
        from securevault.vault.exceptions import RotationFailedError, StoreError

        vault, contents = stocked_vault
        original_replace = vault.blob_store.replace
        original_restore = vault.blob_store.restore
        calls = {"count": 0}

        def flaky_replace(path, data):
            calls["count"] += 1
            if calls["count"] == 2:
                raise StoreError()
            original_replace(path, data)

        def failing_restore(path):
            raise StoreError()

        monkeypatch.setattr(vault.blob_store, "replace", flaky_replace)
        monkeypatch.setattr(vault.blob_store, "restore", failing_restore)

        with pytest.raises(RotationFailedError) as exc_info:
            vault.change_password("admin123", "N3w-pass!")

        assert "No changes were made" not in str(exc_info.value)
        assert "next time the vault is opened" in str(exc_info.value)
        assert config.journal_path.exists()

        monkeypatch.setattr(vault.blob_store, "restore", original_restore)
        restarted = VaultManager(config)
        assert restarted.initialize() == "rolled back"
        _assert_opens_with(restarted, "admin123", contents, output_dir)

    def test_missing_blob_rolls_back(self, stocked_vault, output_dir):
        """A missing blob aborts the whole rotation."""
        from securevault.vault.exceptions import BadCredentialsError, RotationFailedError

        vault, contents = stocked_vault
        victim = vault.list_files()[-1]
        victim.blob_path.unlink()
        del contents[victim.id]

        with pytest.raises(RotationFailedError) as exc_info:
            vault.change_password("admin123", "N3w-pass!")
        assert exc_info.value.entry_id == victim.id

        with pytest.raises(BadCredentialsError):
            vault.authenticate("admin", "N3w-pass!")

        vault.lock()
        vault.login("admin", "admin123")
        for entry in vault.list_files():
            if entry.id != victim.id:
                assert vault.retrieve(entry, output_dir).read_bytes() == contents[entry.id]

    def test_commit_rejected_rolls_back(self, stocked_vault, output_dir, monkeypatch):
        """A rejected credential update restores every blob."""
        from securevault.vault.exceptions import NameTakenError

        vault, contents = stocked_vault
        monkeypatch.setattr(vault.catalog, "update_operator", lambda *args: False)

        with pytest.raises(NameTakenError):
            vault.change_password("admin123", "N3w-pass!", new_name="keeper")

        assert _leftovers(vault) == []
        _assert_opens_with(vault, "admin123", contents, output_dir)

    def test_commit_failure_rolls_back(self, stocked_vault, output_dir, monkeypatch):
        """A store failure at commit restores every blob."""
        from securevault.vault.exceptions import RotationFailedError, StoreError

        vault, contents = stocked_vault

        def failing_update(*args):
            raise StoreError()

        monkeypatch.setattr(vault.catalog, "update_operator", failing_update)

        with pytest.raises(RotationFailedError):
            vault.change_password("admin123", "N3w-pass!")

        _assert_opens_with(vault, "admin123", contents, output_dir)

    def test_name_taken_checked_first(self, stocked_vault, monkeypatch):
        """A taken name is refused before any blob is rewritten."""
        from securevault.vault.exceptions import NameTakenError

        vault, _ = stocked_vault
        monkeypatch.setattr(vault.catalog, "is_name_available", lambda name, exclude_id=None: False)
        before = {e.id: e.blob_path.read_bytes() for e in vault.list_files()}

        with pytest.raises(NameTakenError):
            vault.change_password("admin123", "N3w-pass!", new_name="taken")

        assert {e.id: e.blob_path.read_bytes() for e in vault.list_files()} == before


class TestRecovery:
    """Tests for finishing a rotation interrupted by a crash."""

    def test_crash_before_commit_rolls_back(self, stocked_vault, config, output_dir):
        """A journal without a commit restores the old blobs at startup."""
        from securevault.vault import VaultManager
        from securevault.vault.rotation import rotate_password

        vault, contents = stocked_vault

        def crash_on_second(message, current, total):
            if current == 2:
                raise Crash()

        with pytest.raises(Crash):
            rotate_password(
                vault.catalog,
                vault.blob_store,
                vault.operator_id,
                "admin123",
                "N3w-pass!",
                config.journal_path,
                progress_callback=crash_on_second,
            )
        assert config.journal_path.exists()
        assert len(list(config.files_dir.glob("*.bak"))) == 1

        restarted = VaultManager(config)
        assert restarted.initialize() == "rolled back"
        assert not config.journal_path.exists()
        assert _leftovers(restarted) == []
        _assert_opens_with(restarted, "admin123", contents, output_dir)

    def test_crash_after_commit_keeps_new_key(self, stocked_vault, config, output_dir, monkeypatch):
        """A journal after the commit only cleans up backups at startup."""
        from securevault.vault import VaultManager

        vault, contents = stocked_vault

        def crash(path):
            raise Crash()

        monkeypatch.setattr(vault.blob_store, "discard_backup", crash)

        with pytest.raises(Crash):
            vault.change_password("admin123", "N3w-pass!")
        assert config.journal_path.exists()

        restarted = VaultManager(config)
        assert restarted.initialize() == "committed"
        assert not config.journal_path.exists()
        assert _leftovers(restarted) == []
        _assert_opens_with(restarted, "N3w-pass!", contents, output_dir)

    def test_stale_backup_not_restored(self, stocked_vault, config, output_dir, monkeypatch):
        """A backup left by an earlier rotation is never put back by recovery."""
        from securevault.vault import VaultManager
        from securevault.vault.exceptions import StoreError

        vault, contents = stocked_vault
        oldest = vault.list_files()[-1]
        original_discard = vault.blob_store.discard_backup

        def stuck_discard(path):
            if Path(path) == oldest.blob_path and vault.blob_store.has_backup(path):
                raise StoreError()
            original_discard(path)

        monkeypatch.setattr(vault.blob_store, "discard_backup", stuck_discard)
        vault.change_password("admin123", "N3w-pass!")
        assert vault.blob_store.has_backup(oldest.blob_path)

        monkeypatch.setattr(vault.blob_store, "discard_backup", original_discard)

        def crash(path, data):
            raise Crash()

        monkeypatch.setattr(vault.blob_store, "replace", crash)
        with pytest.raises(Crash):
            vault.change_password("N3w-pass!", "Third-pass!")
        assert not vault.blob_store.has_backup(oldest.blob_path)

        restarted = VaultManager(config)
        assert restarted.initialize() == "rolled back"
        assert _leftovers(restarted) == []
        _assert_opens_with(restarted, "N3w-pass!", contents, output_dir)

    def test_stuck_backup_blocks_rotation(self, stocked_vault, output_dir, monkeypatch):
        """A leftover backup that cannot be removed stops the rotation before any rewrite."""
        from securevault.vault.exceptions import RotationFailedError, StoreError

        vault, contents = stocked_vault
        oldest = vault.list_files()[-1]
        vault.blob_store.backup(oldest.blob_path, oldest.id)
        before = {e.id: e.blob_path.read_bytes() for e in vault.list_files()}

        def failing_discard(path):
            raise StoreError()

        monkeypatch.setattr(vault.blob_store, "discard_backup", failing_discard)

        with pytest.raises(RotationFailedError):
            vault.change_password("admin123", "N3w-pass!")

        assert not vault.config.journal_path.exists()
        assert {e.id: e.blob_path.read_bytes() for e in vault.list_files()} == before
        _assert_opens_with(vault, "admin123", contents, output_dir)

    def test_no_journal(self, vault):
        """Startup without a journal reports nothing to recover."""
        assert vault.initialize() is None


class TestRotationJournal:
    """Tests for the journal file."""

    def test_save_load(self, tmp_path):
        """A saved journal loads back unchanged."""
        from securevault.vault.rotation import RotationJournal

        journal = RotationJournal(operator_id=1, new_salt="c2FsdA==", blob_paths=["/a.enc", "/b.enc"])
        path = tmp_path / "rotation.journal"
        journal.save(path)

        assert RotationJournal.load(path) == journal
        assert not (tmp_path / "rotation.journal.tmp").exists()

    def test_corrupt_journal(self, tmp_path):
        """An unreadable journal raises StoreError."""
        from securevault.vault.exceptions import StoreError
        from securevault.vault.rotation import RotationJournal

        path = tmp_path / "rotation.journal"
        path.write_text("{not json")

        with pytest.raises(StoreError):
            RotationJournal.load(path)
