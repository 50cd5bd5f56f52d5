"""Bundle serializer: the plain-text export document.

Produces and consumes the ``{notes, images, files}`` JSON document shared
by the clear and the encrypted export paths.
"""

import json
import logging
from typing import Any, Dict, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from penvault.codec import decode_blob, encode_blob
from penvault.config import config
from penvault.exceptions import BundleValidationError, NoteNotFoundError
from penvault.models.bundle import (
    Bundle,
    BundleAttachment,
    BundleContents,
    BundleFile,
)
from penvault.models.schema import FileAttachment, ImageAttachment, Note
from penvault.storage.vault_store import VaultStore

logger = logging.getLogger(__name__)

BundleSource = Union[Bundle, Dict[str, Any], str, bytes]


class BundleSerializer:
    """Converts between store contents and export bundles."""

    def __init__(self, store: VaultStore, chunk_size: Optional[int] = None):
        self.store = store
        self.chunk_size = chunk_size or config.b64_chunk_size

    def _encode_image(self, image: ImageAttachment) -> BundleAttachment:
        return BundleAttachment(
            id=image.id,
            note_id=image.note_id,
            name=image.name,
            data=encode_blob(image.data, image.mime_type, self.chunk_size),
            created_at=image.created_at,
        )

    def _encode_file(self, attached: FileAttachment) -> BundleFile:
        return BundleFile(
            id=attached.id,
            note_id=attached.note_id,
            name=attached.name,
            mime_type=attached.mime_type,
            data=encode_blob(attached.data, attached.mime_type, self.chunk_size),
            created_at=attached.created_at,
        )

    def serialize(
        self,
        notes: Iterable[Note],
        images: Iterable[ImageAttachment] = (),
        files: Iterable[FileAttachment] = (),
    ) -> Bundle:
        """Build a bundle, re-encoding every payload as a data URL."""
        return Bundle(
            notes=[note.model_copy() for note in notes],
            images=[self._encode_image(image) for image in images],
            files=[self._encode_file(attached) for attached in files],
        )

    def serialize_all(self) -> Bundle:
        """Bundle the whole vault."""
        bundle = self.serialize(
            self.store.list_notes(),
            self.store.list_all_images(),
            self.store.list_all_files(),
        )
        logger.debug(
            f"Serialized vault: {len(bundle.notes)} notes, "
            f"{len(bundle.images)} images, {len(bundle.files)} files"
        )
        return bundle

    def serialize_one(self, note_id: str) -> Bundle:
        """Bundle one note and the attachments it owns.

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        note = self.store.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return self.serialize(
            [note], self.store.list_images(note_id), self.store.list_files(note_id)
        )

    @staticmethod
    def loads(document: BundleSource) -> Bundle:
        """Parse and validate a bundle from JSON text or a decoded dict.

        Raises:
            BundleValidationError: If the document is not a valid bundle.
        """
        if isinstance(document, Bundle):
            return document
        try:
            if isinstance(document, (str, bytes)):
                document = json.loads(document)
            if not isinstance(document, dict):
                raise BundleValidationError(
                    f"Bundle must be a JSON object, not {type(document).__name__}"
                )
            return Bundle.model_validate(document)
        except json.JSONDecodeError as e:
            raise BundleValidationError("Bundle is not valid JSON", e) from e
        except PydanticValidationError as e:
            raise BundleValidationError(
                f"Bundle failed validation ({e.error_count()} errors)", e
            ) from e

    @staticmethod
    def dumps(bundle: Bundle) -> str:
        """Serialize a bundle as pretty-printed JSON text."""
        return json.dumps(bundle.model_dump(mode="json", by_alias=True), indent=2)

    def deserialize(self, document: BundleSource) -> BundleContents:
        """Decode a bundle back into notes and binary attachments.

        Missing ``images``/``files`` arrays are treated as empty.

        Raises:
            BundleValidationError: If the document or a payload is malformed.
        """
        bundle = self.loads(document)
        try:
            images = [
                ImageAttachment(
                    id=entry.id,
                    note_id=entry.note_id,
                    name=entry.name,
                    data=decode_blob(entry.data)[0],
                    created_at=entry.created_at,
                )
                for entry in bundle.images
            ]
            files = []
            for entry in bundle.files:
                payload, mime = decode_blob(entry.data)
                files.append(
                    FileAttachment(
                        id=entry.id,
                        note_id=entry.note_id,
                        name=entry.name,
                        mime_type=entry.mime_type or mime,
                        data=payload,
                        created_at=entry.created_at,
                    )
                )
        except ValueError as e:
            raise BundleValidationError("Bundle contains an undecodable payload", e) from e

        return BundleContents(
            notes=[note.model_copy() for note in bundle.notes],
            images=images,
            files=files,
        )
