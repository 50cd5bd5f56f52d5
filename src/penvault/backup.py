"""Backup utilities for the penvault note vault.

Two kinds of backup are written to the backup directory:

- export backups: a plain (``.json``) or encrypted (``.pen.json``) export of
  the whole vault, restorable into any store through the merge engine;
- database snapshots: a consistent copy of the SQLite file taken with the
  online backup API, optionally gzip-compressed.
"""
import gzip
import logging
import os
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Union

from penvault.config import config
from penvault.exceptions import PenvaultError
from penvault.models.envelope import ENVELOPE_SUFFIX
from penvault.services.merge_engine import MergeResult
from penvault.services.vault_service import PLAIN_SUFFIX, VaultService

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "penvault_"

# Backup retention settings
DEFAULT_MAX_BACKUPS = 10  # Keep last N backups of each kind
DEFAULT_MAX_AGE_DAYS = 30  # Delete backups older than N days

EXPORT = "export"
ENCRYPTED = "encrypted"
DATABASE = "database"


def backup_kind(path: Path) -> Optional[str]:
    """Classify a backup file by its name, or None if it is not a backup."""
    name = path.name
    if not name.startswith(BACKUP_PREFIX):
        return None
    if name.endswith(ENVELOPE_SUFFIX):
        return ENCRYPTED
    if name.endswith(PLAIN_SUFFIX):
        return EXPORT
    if name.endswith(".db") or name.endswith(".db.gz"):
        return DATABASE
    return None


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S_%f")


class BackupManager:
    """Manages vault backups with rotation.

    Features:
    - Export backups, optionally sealed with a password
    - SQLite online backup (safe during writes) with gzip compression
    - Automatic rotation by count and age, per backup kind
    - Restore of export backups by merging (never deletes notes)
    """

    def __init__(
        self,
        service: VaultService,
        backup_dir: Optional[Union[str, Path]] = None,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    ):
        """Initialize the backup manager.

        Args:
            service: Service over the store being backed up.
            backup_dir: Directory for backups. Defaults to the configured one.
            max_backups: Maximum number of backups of each kind to keep
            max_age_days: Delete backups older than this many days
        """
        self.service = service
        self.backup_dir = Path(backup_dir) if backup_dir else config.get_backup_dir()
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.max_backups = max_backups
        self.max_age_days = max_age_days
        self._lock = Lock()

    def _backup_path(self, label: Optional[str], suffix: str) -> Path:
        label_part = f"_{label}" if label else ""
        return self.backup_dir / f"{BACKUP_PREFIX}{_timestamp()}{label_part}{suffix}"

    def create_backup(
        self,
        password: Optional[str] = None,
        label: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> Optional[Path]:
        """Write an export backup of the whole vault.

        Args:
            password: Seal the backup in an envelope when given.
            label: Optional label to include in the filename
            hint: Clear-text password hint stored in the envelope

        Returns:
            Path to the backup file, or None if the backup failed.

        Example:
            backup_path = manager.create_backup(password, label="weekly")
        """
        suffix = ENVELOPE_SUFFIX if password is not None else PLAIN_SUFFIX
        with self._lock:
            try:
                backup_path = self.service.export_to_file(
                    self._backup_path(label, suffix), password=password, hint=hint
                )
            except PenvaultError as e:
                logger.error(f"Export backup failed: {e}")
                return None

            size_kb = backup_path.stat().st_size / 1024
            logger.info(f"Export backup created: {backup_path} ({size_kb:.1f} KB)")
            self._rotate_backups()
            return backup_path

    def _database_path(self) -> Optional[Path]:
        url = self.service.store.engine.url
        if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
            return None
        return Path(url.database)

    def backup_database(
        self,
        compress: bool = True,
        label: Optional[str] = None,
    ) -> Optional[Path]:
        """Create a snapshot of the SQLite database.

        Uses SQLite's online backup API for a consistent snapshot,
        even if the database is being written to.

        Args:
            compress: Gzip compress the backup (default: True)
            label: Optional label to include in filename

        Returns:
            Path to the backup file, or None if backup failed.
        """
        with self._lock:
            db_path = self._database_path()
            if db_path is None:
                logger.error("Database snapshots need a file-backed SQLite store")
                return None
            if not db_path.exists():
                logger.warning(f"Database not found: {db_path}")
                return None

            backup_path = self._backup_path(label, ".db.gz" if compress else ".db")
            try:
                if compress:
                    temp_path = backup_path.with_suffix("")
                    self._sqlite_backup(db_path, temp_path)
                    self._gzip_file(temp_path, backup_path)
                    temp_path.unlink()
                else:
                    self._sqlite_backup(db_path, backup_path)
            except (OSError, sqlite3.Error) as e:
                logger.error(f"Database backup failed: {e}", exc_info=True)
                return None

            size_mb = backup_path.stat().st_size / (1024 * 1024)
            logger.info(f"Database backup created: {backup_path} ({size_mb:.2f} MB)")
            self._rotate_backups()
            return backup_path

    def _sqlite_backup(self, source: Path, dest: Path) -> None:
        source_conn = sqlite3.connect(str(source))
        dest_conn = sqlite3.connect(str(dest))
        try:
            source_conn.backup(dest_conn)
        finally:
            dest_conn.close()
            source_conn.close()

    def _gzip_file(self, source: Path, dest: Path) -> None:
        with open(source, "rb") as f_in:
            with gzip.open(dest, "wb", compresslevel=6) as f_out:
                shutil.copyfileobj(f_in, f_out)

    def _backups_by_kind(self) -> Dict[str, List[Path]]:
        groups: Dict[str, List[Path]] = {EXPORT: [], ENCRYPTED: [], DATABASE: []}
        for path in self.backup_dir.glob(f"{BACKUP_PREFIX}*"):
            kind = backup_kind(path)
            if kind is not None:
                groups[kind].append(path)
        for paths in groups.values():
            # Newest first; the timestamped name breaks mtime ties
            paths.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
        return groups

    def _rotate_backups(self) -> int:
        """Remove old backups based on count and age limits.

        Returns:
            Number of backups removed.
        """
        removed = 0
        now = datetime.now(timezone.utc).timestamp()
        max_age_seconds = self.max_age_days * 24 * 60 * 60

        for backups in self._backups_by_kind().values():
            for backup in backups[self.max_backups:]:
                try:
                    backup.unlink()
                    removed += 1
                    logger.debug(f"Removed old backup (count limit): {backup}")
                except OSError as e:
                    logger.warning(f"Could not remove old backup {backup}: {e}")

            for backup in backups[:self.max_backups]:
                try:
                    if now - backup.stat().st_mtime > max_age_seconds:
                        backup.unlink()
                        removed += 1
                        logger.debug(f"Removed old backup (age limit): {backup}")
                except OSError as e:
                    logger.warning(f"Could not remove old backup {backup}: {e}")

        if removed > 0:
            logger.info(f"Rotated {removed} old backup(s)")
        return removed

    def list_backups(self) -> List[Dict[str, Any]]:
        """List all available backups, newest first."""
        backups = []
        for kind, paths in self._backups_by_kind().items():
            for path in paths:
                stat = path.stat()
                backups.append({
                    "path": str(path),
                    "name": path.name,
                    "type": kind,
                    "size_bytes": stat.st_size,
                    "created_at": datetime.fromtimestamp(
                        stat.st_mtime, tz=timezone.utc
                    ).isoformat(),
                })
        backups.sort(key=lambda b: (b["created_at"], b["name"]), reverse=True)
        return backups

    def restore(
        self, backup_path: Union[str, Path], password: Optional[str] = None
    ) -> MergeResult:
        """Merge an export backup into the current store.

        Notes already in the store are kept unless the backup holds a
        strictly newer copy; nothing is deleted.

        Raises:
            DecryptError: If an encrypted backup cannot be opened.
            ValidationError: If the backup is encrypted and no password is given.
        """
        with self._lock:
            result = self.service.import_file(backup_path, password=password)
        logger.info(f"Restored backup {Path(backup_path).name}: {result.to_dict()}")
        return result

    def restore_database(self, backup_path: Union[str, Path]) -> bool:
        """Replace the database file with a snapshot.

        WARNING: This overwrites the current database. A ``pre-restore``
        snapshot of the current file is taken first. The store's
        connections are released; reopen the store afterwards.

        Returns:
            True if restore succeeded, False otherwise.
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            logger.error(f"Backup not found: {backup_path}")
            return False
        db_path = self._database_path()
        if db_path is None:
            logger.error("Restore only supports file-backed SQLite stores")
            return False

        # Staged first: rotating in the pre-restore snapshot may delete the source
        staged_path = db_path.with_name(f"{db_path.name}.restore")
        try:
            if backup_path.suffix == ".gz":
                with gzip.open(backup_path, "rb") as f_in:
                    with open(staged_path, "wb") as f_out:
                        shutil.copyfileobj(f_in, f_out)
            else:
                shutil.copy2(backup_path, staged_path)
        except OSError as e:
            staged_path.unlink(missing_ok=True)
            logger.error(f"Could not read backup {backup_path}: {e}", exc_info=True)
            return False

        if db_path.exists():
            self.backup_database(label="pre-restore")

        with self._lock:
            self.service.store.close()
            try:
                os.replace(staged_path, db_path)
                # Stale WAL pages would be replayed over the restored file
                for sidecar in ("-wal", "-shm"):
                    Path(f"{db_path}{sidecar}").unlink(missing_ok=True)
            except OSError as e:
                staged_path.unlink(missing_ok=True)
                logger.error(f"Database restore failed: {e}", exc_info=True)
                return False

        logger.info(f"Database restored from: {backup_path}")
        return True
