"""Data models for the penvault note vault."""

import datetime
import threading
import time
from datetime import timezone
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from penvault.codec import DEFAULT_MIME_TYPE, sniff_image_mime

# Note ids carry a prefix so they can never be confused with the
# integer surrogate ids of attachments.
NOTE_ID_PREFIX = "n_"


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Normalise a datetime to timezone-aware UTC.

    Naive datetimes (as read back from SQLite) are assumed to be UTC;
    aware datetimes in other zones are converted.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value.astimezone(timezone.utc)


_id_lock = threading.Lock()
_last_id_ms = 0


def generate_note_id() -> str:
    """Generate a note id from the current time in milliseconds.

    Returns:
        A string of the form ``n_<epoch milliseconds>``.

    Successive calls in one process always return strictly increasing
    values: when the clock has not advanced (or went backwards) the last
    value is bumped by one millisecond instead.
    """
    global _last_id_ms

    with _id_lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms <= _last_id_ms:
            now_ms = _last_id_ms + 1
        _last_id_ms = now_ms
        return f"{NOTE_ID_PREFIX}{now_ms}"


class Note(BaseModel):
    """A note in the vault.

    Field names are snake_case in Python and camelCase on the wire
    (``createdAt``, ``updatedAt``) so exported bundles stay readable by
    other clients of the format.
    """

    id: str = Field(default_factory=generate_note_id, description="Stable note id")
    title: str = Field(default="", description="Title of the note")
    content: str = Field(default="", description="Markdown-like content")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last saved (UTC)"
    )
    tags: List[str] = Field(
        default_factory=list,
        description="Hashtags derived from content; a cache rebuilt on every save",
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is a non-empty string."""
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalise_timestamp(cls, v: datetime.datetime) -> datetime.datetime:
        """Store every timestamp as timezone-aware UTC."""
        return ensure_timezone_aware(v)

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v):
        """Treat a null tag cache as empty."""
        return [] if v is None else v

    @model_validator(mode="after")
    def check_timestamps(self) -> "Note":
        """A note cannot have been saved before it was created."""
        if self.updated_at < self.created_at:
            raise ValueError(
                f"updatedAt ({self.updated_at.isoformat()}) is earlier than "
                f"createdAt ({self.created_at.isoformat()})"
            )
        return self


class Attachment(BaseModel):
    """A binary payload owned by exactly one note.

    Attachments are never updated in place: replacing one means deleting
    it and adding a new one.
    """

    kind: ClassVar[str] = "attachment"

    id: Optional[int] = Field(default=None, description="Store-assigned surrogate id")
    note_id: str = Field(..., description="Id of the owning note")
    name: str = Field(..., description="Display name")
    data: bytes = Field(..., description="Raw payload")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the attachment was added (UTC)"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("created_at")
    @classmethod
    def normalise_timestamp(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def reference(self) -> str:
        """Reference string embedded in note content, e.g. ``image:3``."""
        return f"{self.kind}:{self.id}"


class ImageAttachment(Attachment):
    """An image. Its mime type is inferred from the payload."""

    kind: ClassVar[str] = "image"

    @property
    def mime_type(self) -> str:
        return sniff_image_mime(self.data) or DEFAULT_MIME_TYPE


class FileAttachment(Attachment):
    """An arbitrary file with an explicit mime type."""

    kind: ClassVar[str] = "file"

    mime_type: str = Field(default=DEFAULT_MIME_TYPE, description="Mime type")

    @field_validator("mime_type", mode="before")
    @classmethod
    def default_mime_type(cls, v: Optional[str]) -> str:
        return v or DEFAULT_MIME_TYPE
