"""Tests for backup workflows.

Tests for export backups, database snapshots, rotation and restore.
"""
import gzip
import json
import os
import sqlite3
import time

import pytest

from penvault.backup import DATABASE, ENCRYPTED, EXPORT, BackupManager, backup_kind
from penvault.exceptions import ValidationError
from penvault.services.vault_service import VaultService
from penvault.storage.vault_store import VaultStore

PASSWORD = "correct-horse"


@pytest.fixture
def backup_dir(temp_dir):
    return temp_dir / "backups"


@pytest.fixture
def backup_manager(populated_store, service, backup_dir):
    """Create a BackupManager over the populated store."""
    return BackupManager(service, backup_dir=backup_dir, max_backups=5, max_age_days=30)


class TestBackupKinds:
    """File name classification."""

    @pytest.mark.parametrize(
        "name,kind",
        [
            ("penvault_20240101T000000_000000.json", EXPORT),
            ("penvault_20240101T000000_000000_weekly.pen.json", ENCRYPTED),
            ("penvault_20240101T000000_000000.db.gz", DATABASE),
            ("penvault_20240101T000000_000000.db", DATABASE),
            ("notes.json", None),
            ("penvault_20240101T000000_000000.txt", None),
        ],
    )
    def test_backup_kind(self, temp_dir, name, kind):
        assert backup_kind(temp_dir / name) == kind


class TestExportBackups:
    """Plain and encrypted export backups."""

    def test_creates_directory(self, service, temp_dir):
        new_dir = temp_dir / "nested" / "backups"
        BackupManager(service, backup_dir=new_dir)
        assert new_dir.exists()

    def test_default_directory_from_config(self, service, test_config):
        manager = BackupManager(service)
        assert manager.backup_dir == test_config.get_absolute_path(test_config.backup_dir)

    def test_plain_backup(self, backup_manager):
        path = backup_manager.create_backup(label="weekly")
        assert path.exists()
        assert path.name.startswith("penvault_")
        assert path.name.endswith("_weekly.json")
        assert len(json.loads(path.read_text())["notes"]) == 2

    def test_encrypted_backup(self, backup_manager):
        path = backup_manager.create_backup(password=PASSWORD, hint="usual")
        assert path.name.endswith(".pen.json")
        document = json.loads(path.read_text())
        assert document["format"] == "pen"
        assert "Cats" not in path.read_text()

    def test_invalid_password_returns_none(self, backup_manager):
        assert backup_manager.create_backup(password="") is None

    def test_list_backups(self, backup_manager):
        backup_manager.create_backup()
        backup_manager.create_backup(password=PASSWORD)
        backups = backup_manager.list_backups()
        assert {b["type"] for b in backups} == {EXPORT, ENCRYPTED}
        assert all(b["size_bytes"] > 0 for b in backups)

    def test_rotation_by_count(self, service, populated_store, backup_dir):
        manager = BackupManager(service, backup_dir=backup_dir, max_backups=2)
        for _ in range(4):
            manager.create_backup()
        assert len(manager.list_backups()) == 2

    def test_rotation_is_per_kind(self, service, populated_store, backup_dir):
        manager = BackupManager(service, backup_dir=backup_dir, max_backups=1)
        manager.create_backup()
        manager.create_backup(password=PASSWORD)
        assert {b["type"] for b in manager.list_backups()} == {EXPORT, ENCRYPTED}

    def test_rotation_by_age(self, backup_manager):
        old = backup_manager.create_backup()
        stale = time.time() - 40 * 24 * 60 * 60
        os.utime(old, (stale, stale))
        fresh = backup_manager.create_backup()
        assert not old.exists()
        assert fresh.exists()


class TestRestore:
    """Restoring export backups through the merge engine."""

    def test_restore_into_another_vault(self, backup_manager, other_service, other_store):
        path = backup_manager.create_backup()
        result = BackupManager(other_service, backup_dir=backup_manager.backup_dir).restore(path)
        assert result.notes_added == 2
        assert other_store.count_notes() == 2
        assert len(other_store.list_all_images()) == 1

    def test_restore_encrypted(self, backup_manager, other_service, other_store):
        path = backup_manager.create_backup(password=PASSWORD)
        manager = BackupManager(other_service, backup_dir=backup_manager.backup_dir)
        with pytest.raises(ValidationError):
            manager.restore(path)
        assert manager.restore(path, password=PASSWORD).notes_added == 2

    def test_restore_keeps_newer_local_edits(self, backup_manager, populated_store):
        path = backup_manager.create_backup()
        note = populated_store.list_notes()[0]
        populated_store.update_note(note.id, title="Edited after backup")
        result = backup_manager.restore(path)
        assert result.notes_updated == 0
        assert populated_store.get_note(note.id).title == "Edited after backup"


class TestDatabaseSnapshots:
    """SQLite online backups."""

    def test_compressed_snapshot(self, backup_manager, temp_dir):
        path = backup_manager.backup_database(label="pre-upgrade")
        assert path.name.endswith("_pre-upgrade.db.gz")

        restored = temp_dir / "snapshot.db"
        with gzip.open(path, "rb") as f_in:
            restored.write_bytes(f_in.read())
        conn = sqlite3.connect(str(restored))
        try:
            assert conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0] == 2
        finally:
            conn.close()

    def test_uncompressed_snapshot(self, backup_manager):
        path = backup_manager.backup_database(compress=False)
        assert path.suffix == ".db"
        assert backup_kind(path) == DATABASE

    def test_memory_store_cannot_snapshot(self, memory_store, backup_dir):
        manager = BackupManager(VaultService(memory_store), backup_dir=backup_dir)
        assert manager.backup_database() is None

    def test_restore_database(self, backup_manager, populated_store, test_config):
        snapshot = backup_manager.backup_database()
        populated_store.create_note()
        assert populated_store.count_notes() == 3

        assert backup_manager.restore_database(snapshot) is True

        reopened = VaultStore(db_url=test_config.get_db_url())
        try:
            assert reopened.count_notes() == 2
        finally:
            reopened.close()
        # A safety snapshot of the replaced database was taken
        assert any("pre-restore" in b["name"] for b in backup_manager.list_backups())

    def test_restore_oldest_snapshot_at_count_limit(
        self, service, populated_store, backup_dir, test_config
    ):
        """The pre-restore snapshot rotates the source out; the restore still succeeds."""
        manager = BackupManager(service, backup_dir=backup_dir, max_backups=3)
        oldest = manager.backup_database(label="s0")
        hour_ago = time.time() - 60 * 60
        os.utime(oldest, (hour_ago, hour_ago))
        populated_store.create_note()
        manager.backup_database(label="s1")
        manager.backup_database(label="s2")

        assert manager.restore_database(oldest) is True
        assert not oldest.exists()

        reopened = VaultStore(db_url=test_config.get_db_url())
        try:
            assert reopened.count_notes() == 2
        finally:
            reopened.close()
        assert not list(test_config.database_path.parent.glob("*.restore"))

    def test_restore_missing_snapshot(self, backup_manager, temp_dir):
        assert backup_manager.restore_database(temp_dir / "nope.db.gz") is False
