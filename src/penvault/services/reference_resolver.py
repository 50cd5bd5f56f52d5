"""Resolution of ``image:<id>`` / ``file:<id>`` references in note content."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from penvault.codec import encode_blob
from penvault.models.schema import FileAttachment, ImageAttachment
from penvault.storage.vault_store import VaultStore
from penvault.utils import find_blob_references, parse_blob_reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedBlob:
    """An attachment found for a reference, ready to hand to a renderer."""

    reference: str
    attachment: Union[ImageAttachment, FileAttachment]
    # True when found in the note's own attachments, False on vault fallback
    owned: bool

    @property
    def mime_type(self) -> str:
        return self.attachment.mime_type

    def data_url(self) -> str:
        return encode_blob(self.attachment.data, self.mime_type)


class ReferenceResolver:
    """Looks up the attachment behind a content reference.

    The note's own attachments are searched first. Content may also
    reference a blob owned by another note (pasted or authored elsewhere),
    so a miss falls back to a vault-wide lookup. Creating and disposing of
    render handles is left to the caller.
    """

    def __init__(self, store: VaultStore):
        self.store = store

    def resolve(self, reference: str, note_id: Optional[str] = None) -> Optional[ResolvedBlob]:
        """Resolve one reference string, or return None if it dangles."""
        try:
            ref = parse_blob_reference(reference)
        except ValueError:
            return None

        if note_id is not None:
            owned = (
                self.store.list_images(note_id)
                if ref.kind == "image"
                else self.store.list_files(note_id)
            )
            for attachment in owned:
                if attachment.id == ref.attachment_id:
                    return ResolvedBlob(str(ref), attachment, owned=True)

        attachment = (
            self.store.get_image(ref.attachment_id)
            if ref.kind == "image"
            else self.store.get_file(ref.attachment_id)
        )
        if attachment is None:
            logger.debug(f"Unresolved reference {ref}")
            return None
        return ResolvedBlob(str(ref), attachment, owned=attachment.note_id == note_id)

    def resolve_content(self, content: str, note_id: Optional[str] = None) -> Dict[str, Optional[ResolvedBlob]]:
        """Resolve every reference found in ``content``."""
        return {
            str(ref): self.resolve(str(ref), note_id)
            for ref in find_blob_references(content)
        }

    def dangling_references(self, content: str, note_id: Optional[str] = None) -> List[str]:
        """References in ``content`` that resolve to nothing."""
        return [
            ref for ref, blob in self.resolve_content(content, note_id).items() if blob is None
        ]
