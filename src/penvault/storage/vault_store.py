"""Vault store: persistence for notes and their image and file attachments."""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Type, Union

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from penvault.codec import DEFAULT_MIME_TYPE
from penvault.exceptions import OrphanAttachmentError, TransactionError
from penvault.models.db_models import (
    DBFile,
    DBImage,
    DBNote,
    get_session_factory,
    init_db,
)
from penvault.models.schema import (
    FileAttachment,
    ImageAttachment,
    Note,
    ensure_timezone_aware,
    generate_note_id,
    utc_now,
)
from penvault.observability import traced
from penvault.utils import escape_like_pattern, extract_tags

logger = logging.getLogger(__name__)

DBAttachment = Union[DBImage, DBFile]


def to_db_datetime(value):
    """Convert an aware datetime into the naive UTC form stored in SQLite."""
    return ensure_timezone_aware(value).replace(tzinfo=None)


def db_note_to_model(db_note: DBNote) -> Note:
    """Convert a DBNote row into a Note."""
    return Note(
        id=db_note.id,
        title=db_note.title or "",
        content=db_note.content or "",
        created_at=ensure_timezone_aware(db_note.created_at),
        updated_at=ensure_timezone_aware(db_note.updated_at),
        tags=list(db_note.tags or []),
    )


def db_image_to_model(db_image: DBImage) -> ImageAttachment:
    return ImageAttachment(
        id=db_image.id,
        note_id=db_image.note_id,
        name=db_image.name,
        data=db_image.data,
        created_at=ensure_timezone_aware(db_image.created_at),
    )


def db_file_to_model(db_file: DBFile) -> FileAttachment:
    return FileAttachment(
        id=db_file.id,
        note_id=db_file.note_id,
        name=db_file.name,
        mime_type=db_file.mime_type,
        data=db_file.data,
        created_at=ensure_timezone_aware(db_file.created_at),
    )


class VaultStore:
    """CRUD persistence for notes, images and files.

    One store instance owns one database. It is constructed explicitly and
    handed to every component that needs it; there is no process-wide
    store. Mutations are immediately durable once a method returns.

    Multi-entity writes (cascade delete, attachment insertion, merges run
    through :meth:`transaction`) execute in a single SQLite transaction:
    either every row changes or none does.
    """

    def __init__(self, engine: Optional[Engine] = None, db_url: Optional[str] = None):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine. If None, one is created from ``db_url``
                or from the configured database path.
            db_url: Database URL used when no engine is given.
        """
        self.engine = engine or init_db(db_url)
        self.session_factory = get_session_factory(self.engine)
        logger.info("VaultStore initialized")

    @contextmanager
    def transaction(self, operation: str) -> Iterator[Session]:
        """Run a block in one database transaction.

        Commits when the block exits normally and rolls back on any
        exception. Database failures are re-raised as TransactionError;
        domain errors raised inside the block propagate unchanged.
        """
        session = self.session_factory()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Transaction '{operation}' rolled back: {e}")
            raise TransactionError(operation, original_error=e) from e
        finally:
            session.close()

    # =========================================================================
    # Notes
    # =========================================================================

    def list_notes(self) -> List[Note]:
        """All notes, most recently updated first."""
        with self.session_factory() as session:
            rows = session.scalars(
                select(DBNote).order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).all()
            return [db_note_to_model(row) for row in rows]

    def get_note(self, note_id: str) -> Optional[Note]:
        """Get a note by id, or None."""
        with self.session_factory() as session:
            db_note = session.get(DBNote, note_id)
            return db_note_to_model(db_note) if db_note else None

    def count_notes(self) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBNote.id))) or 0

    def search_notes(self, query: str) -> List[Note]:
        """Notes whose title or content contains ``query`` (case-insensitive)."""
        pattern = f"%{escape_like_pattern(query.lower())}%"
        haystack = func.lower(DBNote.title + " " + DBNote.content)
        with self.session_factory() as session:
            rows = session.scalars(
                select(DBNote)
                .where(haystack.like(pattern, escape="\\"))
                .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).all()
            return [db_note_to_model(row) for row in rows]

    @traced("create_note")
    def create_note(self, title: str = "", content: str = "") -> Note:
        """Create a note with a fresh id, empty unless title or content is given.

        ``created_at`` and ``updated_at`` are equal on creation. The note and
        its tag cache are written in one transaction.
        """
        now = utc_now()
        note = Note(
            id=generate_note_id(),
            title=title or "",
            content=content or "",
            created_at=now,
            updated_at=now,
            tags=extract_tags(content or ""),
        )
        with self.transaction("create_note") as session:
            # The id source is monotonic per process; another process (or an
            # import) may still have produced the same value.
            while session.get(DBNote, note.id) is not None:
                note = note.model_copy(update={"id": generate_note_id()})
            session.add(
                DBNote(
                    id=note.id,
                    title=note.title,
                    content=note.content,
                    created_at=to_db_datetime(note.created_at),
                    updated_at=to_db_datetime(note.updated_at),
                    tags=list(note.tags),
                )
            )
        logger.info(f"Created note {note.id}")
        return note

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Optional[Note]:
        """Apply the supplied fields to a note and save it.

        Only non-None arguments are changed. ``updated_at`` is always
        stamped (never moving backwards) and the tag cache is rebuilt from
        the resulting content. No timestamp comparison is made: the last
        caller wins.

        Returns:
            The saved note, or None if no note has this id.
        """
        with self.transaction("update_note") as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                logger.debug(f"update_note: note {note_id} not found")
                return None

            if title is not None:
                db_note.title = title
            if content is not None:
                db_note.content = content
            db_note.updated_at = max(to_db_datetime(utc_now()), db_note.updated_at)
            db_note.tags = extract_tags(db_note.content)
            session.flush()
            return db_note_to_model(db_note)

    @traced("remove_note")
    def remove_note(self, note_id: str) -> bool:
        """Delete a note together with all of its images and files.

        Returns:
            True if the note existed, False if there was nothing to delete.
        """
        with self.transaction("remove_note") as session:
            images = session.execute(
                delete(DBImage).where(DBImage.note_id == note_id)
            ).rowcount
            files = session.execute(
                delete(DBFile).where(DBFile.note_id == note_id)
            ).rowcount
            removed = (
                session.execute(delete(DBNote).where(DBNote.id == note_id)).rowcount > 0
            )

        if removed:
            logger.info(f"Removed note {note_id} ({images} images, {files} files)")
        return removed

    # =========================================================================
    # Attachments
    # =========================================================================

    @staticmethod
    def _require_note(session: Session, kind: str, note_id: str, name: str) -> None:
        if session.get(DBNote, note_id) is None:
            raise OrphanAttachmentError(kind, note_id, name)

    @traced("add_image")
    def add_image(self, note_id: str, name: str, data: bytes) -> ImageAttachment:
        """Attach an image to an existing note.

        Raises:
            OrphanAttachmentError: If the note does not exist.
        """
        with self.transaction("add_image") as session:
            self._require_note(session, "image", note_id, name)
            db_image = DBImage(
                note_id=note_id,
                name=name,
                data=bytes(data),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(db_image)
            session.flush()
            image = db_image_to_model(db_image)
        logger.info(f"Added image {image.id} ({image.size} bytes) to note {note_id}")
        return image

    @traced("add_file")
    def add_file(
        self,
        note_id: str,
        name: str,
        data: bytes,
        mime_type: str = DEFAULT_MIME_TYPE,
    ) -> FileAttachment:
        """Attach a file to an existing note.

        Raises:
            OrphanAttachmentError: If the note does not exist.
        """
        with self.transaction("add_file") as session:
            self._require_note(session, "file", note_id, name)
            db_file = DBFile(
                note_id=note_id,
                name=name,
                mime_type=mime_type or DEFAULT_MIME_TYPE,
                data=bytes(data),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(db_file)
            session.flush()
            attached = db_file_to_model(db_file)
        logger.info(f"Added file {attached.id} ({attached.size} bytes) to note {note_id}")
        return attached

    def _list(self, table: Type[DBAttachment], note_id: Optional[str] = None):
        converter = db_image_to_model if table is DBImage else db_file_to_model
        query = select(table).order_by(table.created_at, table.id)
        if note_id is not None:
            query = query.where(table.note_id == note_id)
        with self.session_factory() as session:
            return [converter(row) for row in session.scalars(query).all()]

    def list_images(self, note_id: str) -> List[ImageAttachment]:
        """Images owned by one note, oldest first."""
        return self._list(DBImage, note_id)

    def list_files(self, note_id: str) -> List[FileAttachment]:
        """Files owned by one note, oldest first."""
        return self._list(DBFile, note_id)

    def list_all_images(self) -> List[ImageAttachment]:
        """Every image in the vault."""
        return self._list(DBImage)

    def list_all_files(self) -> List[FileAttachment]:
        """Every file in the vault."""
        return self._list(DBFile)

    def get_image(self, image_id: int) -> Optional[ImageAttachment]:
        with self.session_factory() as session:
            row = session.get(DBImage, image_id)
            return db_image_to_model(row) if row else None

    def get_file(self, file_id: int) -> Optional[FileAttachment]:
        with self.session_factory() as session:
            row = session.get(DBFile, file_id)
            return db_file_to_model(row) if row else None

    def _remove(self, table: Type[DBAttachment], attachment_id: int) -> bool:
        with self.transaction(f"remove_{table.__tablename__[:-1]}") as session:
            result = session.execute(delete(table).where(table.id == attachment_id))
            return result.rowcount > 0

    @traced("remove_image")
    def remove_image(self, image_id: int) -> bool:
        """Delete one image. References left in note text simply dangle."""
        return self._remove(DBImage, image_id)

    @traced("remove_file")
    def remove_file(self, file_id: int) -> bool:
        """Delete one file. References left in note text simply dangle."""
        return self._remove(DBFile, file_id)

    def close(self) -> None:
        """Release database connections."""
        self.engine.dispose()
