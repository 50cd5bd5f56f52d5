"""Merge engine: reconcile an incoming bundle with the store.

The merge is additive and non-destructive:

- a note is inserted when its id is unknown, and overwritten only when the
  incoming ``updated_at`` is strictly later than the stored one
  (last-writer-wins; ties keep the stored copy);
- an attachment is skipped when its ``(note_id, name)`` pair already
  exists, and otherwise inserted under a fresh surrogate id;
- nothing absent from the bundle is ever deleted.

Everything happens in one transaction: a failure leaves the store as it
was before the merge started.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Type, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from penvault.models.bundle import BundleContents
from penvault.models.db_models import DBFile, DBImage, DBNote
from penvault.models.schema import FileAttachment, ImageAttachment, Note
from penvault.observability import timed_operation
from penvault.storage.vault_store import VaultStore, to_db_datetime
from penvault.utils import extract_tags

logger = logging.getLogger(__name__)

# Outcomes of merging one attachment
ADDED = "added"
DUPLICATE = "duplicate"
ORPHAN = "orphan"


@dataclass
class MergeResult:
    """What a merge changed."""

    notes_added: int = 0
    notes_updated: int = 0
    notes_unchanged: int = 0
    images_added: int = 0
    images_skipped: int = 0
    files_added: int = 0
    files_skipped: int = 0
    orphans_skipped: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.notes_added or self.notes_updated or self.images_added or self.files_added
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class MergeEngine:
    """Imports deserialized bundles into a store without losing data."""

    def __init__(self, store: VaultStore):
        self.store = store

    def merge(self, incoming: BundleContents) -> MergeResult:
        """Merge notes, images and files from ``incoming`` into the store.

        Attachments whose owning note exists neither in the store nor in
        the bundle are skipped and counted in ``orphans_skipped``.

        Raises:
            TransactionError: If the database write fails; nothing is kept.
        """
        result = MergeResult()
        with timed_operation(
            "merge_bundle",
            notes=len(incoming.notes),
            images=len(incoming.images),
            files=len(incoming.files),
        ) as op:
            with self.store.transaction("merge_bundle") as session:
                for note in incoming.notes:
                    self._merge_note(session, note, result)

                for image in incoming.images:
                    outcome = self._merge_attachment(session, DBImage, image)
                    result.images_added += outcome == ADDED
                    result.images_skipped += outcome == DUPLICATE
                    result.orphans_skipped += outcome == ORPHAN
                for attached in incoming.files:
                    outcome = self._merge_attachment(session, DBFile, attached)
                    result.files_added += outcome == ADDED
                    result.files_skipped += outcome == DUPLICATE
                    result.orphans_skipped += outcome == ORPHAN
            op.update(result.to_dict())

        logger.info(f"Merged bundle: {result.to_dict()}")
        if result.orphans_skipped:
            logger.warning(
                f"Skipped {result.orphans_skipped} attachments with no owning note"
            )
        return result

    @staticmethod
    def _merge_note(session: Session, note: Note, result: MergeResult) -> None:
        existing = session.get(DBNote, note.id)
        tags = extract_tags(note.content)
        if existing is None:
            session.add(
                DBNote(
                    id=note.id,
                    title=note.title,
                    content=note.content,
                    created_at=to_db_datetime(note.created_at),
                    updated_at=to_db_datetime(note.updated_at),
                    tags=tags,
                )
            )
            session.flush()
            result.notes_added += 1
        elif to_db_datetime(note.updated_at) > existing.updated_at:
            existing.title = note.title
            existing.content = note.content
            existing.created_at = to_db_datetime(note.created_at)
            existing.updated_at = to_db_datetime(note.updated_at)
            existing.tags = tags
            result.notes_updated += 1
        else:
            result.notes_unchanged += 1

    @staticmethod
    def _merge_attachment(
        session: Session,
        table: Type[Union[DBImage, DBFile]],
        attachment: Union[ImageAttachment, FileAttachment],
    ) -> str:
        """Insert one attachment unless its (note_id, name) pair exists."""
        if session.get(DBNote, attachment.note_id) is None:
            return ORPHAN

        duplicate = session.scalar(
            select(table.id)
            .where(table.note_id == attachment.note_id, table.name == attachment.name)
            .limit(1)
        )
        if duplicate is not None:
            return DUPLICATE

        # The incoming surrogate id is local to another store: never reuse it
        row = table(
            note_id=attachment.note_id,
            name=attachment.name,
            data=attachment.data,
            created_at=to_db_datetime(attachment.created_at),
        )
        if isinstance(attachment, FileAttachment):
            row.mime_type = attachment.mime_type
        session.add(row)
        session.flush()
        return ADDED
