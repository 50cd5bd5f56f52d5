"""Service layer: export/import pipelines and vault-wide queries."""

import datetime
import logging
from pathlib import Path
from typing import List, Optional, Union

from sqlalchemy import select

from penvault.exceptions import ErrorCode, StorageError, ValidationError
from penvault.models.bundle import Bundle
from penvault.models.db_models import DBNote
from penvault.models.envelope import ENVELOPE_SUFFIX
from penvault.models.schema import Note
from penvault.observability import traced
from penvault.services import envelope
from penvault.services.bundle_serializer import BundleSerializer
from penvault.services.merge_engine import MergeEngine, MergeResult
from penvault.services.reference_resolver import ReferenceResolver
from penvault.storage.vault_store import VaultStore
from penvault.utils import TAG_PATTERN, extract_tags, slugify_title

logger = logging.getLogger(__name__)

PLAIN_SUFFIX = ".json"


def default_export_name(encrypted: bool = False, note_id: Optional[str] = None) -> str:
    """Suggested file name for an export, e.g. ``penvault-2024-05-01.json``."""
    stem = f"penvault-{datetime.date.today().isoformat()}"
    if note_id:
        stem = f"{stem}-{note_id}"
    return stem + (ENVELOPE_SUFFIX if encrypted else PLAIN_SUFFIX)


class VaultService:
    """Export, import and query operations over one store.

    Export: store -> bundle -> [envelope] -> text.
    Import: text -> [envelope] -> bundle -> merge into store.
    """

    def __init__(self, store: VaultStore):
        self.store = store
        self.serializer = BundleSerializer(store)
        self.merger = MergeEngine(store)
        self.resolver = ReferenceResolver(store)

    # =========================================================================
    # Export
    # =========================================================================

    def export_bundle(self, note_id: Optional[str] = None) -> Bundle:
        """Bundle the whole vault, or one note when ``note_id`` is given."""
        if note_id is not None:
            return self.serializer.serialize_one(note_id)
        return self.serializer.serialize_all()

    @traced("export_json")
    def export_json(self, note_id: Optional[str] = None) -> str:
        """Plain export document (pretty-printed JSON)."""
        return self.serializer.dumps(self.export_bundle(note_id))

    @traced("export_encrypted")
    def export_encrypted(
        self,
        password: str,
        note_id: Optional[str] = None,
        hint: Optional[str] = None,
        iterations: Optional[int] = None,
    ) -> str:
        """Encrypted export document (``.pen.json`` content)."""
        bundle = self.export_bundle(note_id)
        sealed = envelope.seal(password, bundle, iterations=iterations, hint=hint)
        return sealed.to_json()

    def export_to_file(
        self,
        path: Union[str, Path],
        password: Optional[str] = None,
        note_id: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> Path:
        """Write an export to ``path``; encrypted when a password is given.

        A directory path receives a file with the default export name.
        """
        path = Path(path)
        if path.is_dir():
            path = path / default_export_name(password is not None, note_id)
        if password is not None:
            text = self.export_encrypted(password, note_id=note_id, hint=hint)
        else:
            text = self.export_json(note_id)

        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(text, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise StorageError(
                "Failed to write export",
                operation="export",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.info(f"Exported vault to {path}")
        return path

    # =========================================================================
    # Import
    # =========================================================================

    @traced("import_json")
    def import_json(self, document: Union[str, bytes, dict]) -> MergeResult:
        """Merge a plain export document into the store."""
        return self.merger.merge(self.serializer.deserialize(document))

    @traced("import_encrypted")
    def import_encrypted(self, password: str, document: Union[str, bytes, dict]) -> MergeResult:
        """Open an encrypted export document and merge it into the store."""
        bundle = envelope.open_envelope(password, document)
        return self.merger.merge(self.serializer.deserialize(bundle))

    def import_document(
        self, document: Union[str, bytes, dict], password: Optional[str] = None
    ) -> MergeResult:
        """Import either kind of document, detecting envelopes by ``format``.

        Raises:
            ValidationError: If the document is encrypted and no password
                was given.
        """
        if envelope.is_envelope(document):
            if password is None:
                raise ValidationError(
                    "This export is encrypted: a password is required", field="password"
                )
            return self.import_encrypted(password, document)
        return self.import_json(document)

    def import_file(self, path: Union[str, Path], password: Optional[str] = None) -> MergeResult:
        """Read an export file and merge it into the store."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                "Failed to read import file",
                operation="import",
                path=str(path),
                original_error=e,
            ) from e
        result = self.import_document(text, password=password)
        logger.info(f"Imported {path}: {result.to_dict()}")
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    def search(self, query: str) -> List[Note]:
        """Filter notes by a search query.

        ``#tag`` (or ``#'quoted tag'``) matches the tag cache; anything else
        is a case-insensitive substring match over title and content. An
        empty query returns every note.
        """
        q = query.strip()
        if not q:
            return self.store.list_notes()
        if TAG_PATTERN.fullmatch(q):
            tag = extract_tags(q)[0]
            return [note for note in self.store.list_notes() if tag in note.tags]
        return self.store.search_notes(q)

    def all_tags(self) -> List[str]:
        """Every tag used in the vault, sorted."""
        tags = set()
        for note in self.store.list_notes():
            tags.update(note.tags)
        return sorted(tags)

    def find_note_by_slug(self, slug: str) -> Optional[Note]:
        """Find the note a ``note:<slug>`` wiki link points to.

        When several titles share a slug the most recently updated note wins.
        """
        slug = slug.strip().lower()
        for note in self.store.list_notes():
            if note.title and slugify_title(note.title) == slug:
                return note
        return None

    def rebuild_tags(self) -> int:
        """Recompute the tag cache of every note from its content.

        Returns:
            Number of notes whose cached tags changed.
        """
        changed = 0
        with self.store.transaction("rebuild_tags") as session:
            for db_note in session.scalars(select(DBNote)).all():
                tags = extract_tags(db_note.content)
                if tags != list(db_note.tags or []):
                    db_note.tags = tags
                    changed += 1
        logger.info(f"Rebuilt tag cache ({changed} notes changed)")
        return changed
