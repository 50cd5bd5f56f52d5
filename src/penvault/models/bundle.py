"""Wire schema of the plain export bundle.

A bundle is the JSON document::

    {"notes": [...], "images": [...], "files": [...]}

with attachment payloads as base64 data URLs. ``images`` and ``files``
are optional: bundles written before attachments existed only carry
``notes``.
"""

import datetime
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from penvault.models.schema import (
    FileAttachment,
    ImageAttachment,
    Note,
    ensure_timezone_aware,
    utc_now,
)

BUNDLE_MIME_TYPE = "application/json"


class BundleAttachment(BaseModel):
    """An image entry: payload carried as a data URL."""

    id: Optional[int] = None
    note_id: str
    name: str
    data: str
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    @field_validator("created_at")
    @classmethod
    def normalise_timestamp(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)


class BundleFile(BundleAttachment):
    """A file entry: like an image, plus its mime type under ``type``."""

    mime_type: Optional[str] = Field(
        default=None,
        serialization_alias="type",
        validation_alias=AliasChoices("type", "mimeType", "mime_type"),
    )


class Bundle(BaseModel):
    """The plain export unit: notes plus their text-encoded attachments."""

    notes: List[Note] = Field(default_factory=list)
    images: List[BundleAttachment] = Field(default_factory=list)
    files: List[BundleFile] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @field_validator("notes", "images", "files", mode="before")
    @classmethod
    def default_empty(cls, v):
        """Older bundles may carry ``null`` instead of an empty array."""
        return [] if v is None else v


@dataclass
class BundleContents:
    """A deserialized bundle: notes and attachments with binary payloads."""

    notes: List[Note] = field(default_factory=list)
    images: List[ImageAttachment] = field(default_factory=list)
    files: List[FileAttachment] = field(default_factory=list)
