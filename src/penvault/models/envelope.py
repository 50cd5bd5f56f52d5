"""Wire schema of the encrypted ``.pen.json`` container (version 1)."""

import datetime
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from penvault.config import MAX_KDF_ITERATIONS

ENVELOPE_FORMAT = "pen"
ENVELOPE_VERSION = 1
ENVELOPE_MIME_TYPE = "application/pen+json"
ENVELOPE_SUFFIX = ".pen.json"

KDF_NAME = "PBKDF2"
KDF_HASH = "SHA-256"
CIPHER_NAME = "AES-GCM"


class AppInfo(BaseModel):
    """Clear-text identification of the writer."""

    name: str
    schema_: Optional[int] = Field(default=None, alias="schema")
    build: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class KdfParams(BaseModel):
    """Key derivation parameters; salt as base64 text."""

    name: Literal["PBKDF2"] = KDF_NAME
    hash: Literal["SHA-256"] = KDF_HASH
    iterations: int = Field(..., gt=0, le=MAX_KDF_ITERATIONS, strict=True)
    salt: str = Field(..., validation_alias=AliasChoices("salt", "salt_b64"))

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CipherParams(BaseModel):
    """Cipher parameters; nonce as base64 text."""

    name: Literal["AES-GCM"] = CIPHER_NAME
    iv: str = Field(..., validation_alias=AliasChoices("iv", "iv_b64"))

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EnvelopeMeta(BaseModel):
    """Clear-text metadata. Not secret: never put sensitive data here."""

    created_at: Optional[datetime.datetime] = Field(
        default=None, validation_alias=AliasChoices("created_at", "date")
    )
    notes_count: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("notes_count", "notes")
    )
    hint: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PenContainerV1(BaseModel):
    """Password-encrypted container wrapping a serialized bundle."""

    format: Literal["pen"] = ENVELOPE_FORMAT
    version: Literal[1] = ENVELOPE_VERSION
    app: Optional[AppInfo] = None
    kdf: KdfParams
    cipher: CipherParams
    meta: Optional[EnvelopeMeta] = None
    ciphertext: str = Field(..., validation_alias=AliasChoices("ciphertext", "ct_b64"))

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json(self) -> str:
        """Serialize the envelope as pretty-printed JSON."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)
