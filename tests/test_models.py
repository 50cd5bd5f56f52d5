# tests/test_models.py
"""Tests for the data models used by the penvault note vault."""
import datetime
from datetime import timedelta, timezone

import pytest
from pydantic import ValidationError

from penvault.codec import DEFAULT_MIME_TYPE
from penvault.models.bundle import Bundle, BundleFile
from penvault.models.envelope import PenContainerV1
from penvault.models.schema import (
    NOTE_ID_PREFIX,
    FileAttachment,
    ImageAttachment,
    Note,
    ensure_timezone_aware,
    generate_note_id,
)
from tests.samples import PNG_BYTES


class TestNoteIds:
    """Tests for note id generation."""

    def test_prefix_and_millisecond_value(self):
        note_id = generate_note_id()
        assert note_id.startswith(NOTE_ID_PREFIX)
        assert note_id[len(NOTE_ID_PREFIX):].isdigit()

    def test_strictly_increasing(self):
        """Ids never repeat, even when generated within one millisecond."""
        values = [int(generate_note_id()[len(NOTE_ID_PREFIX):]) for _ in range(1000)]
        assert values == sorted(values)
        assert len(set(values)) == len(values)


class TestNoteModel:
    """Tests for the Note model."""

    def test_defaults(self):
        note = Note()
        assert note.id.startswith(NOTE_ID_PREFIX)
        assert note.title == ""
        assert note.content == ""
        assert note.tags == []
        assert note.created_at.tzinfo is not None

    def test_camel_case_wire_names(self):
        now = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        note = Note(id="n_1", title="T", content="C", created_at=now, updated_at=now)
        dumped = note.model_dump(mode="json", by_alias=True)
        assert set(dumped) == {"id", "title", "content", "createdAt", "updatedAt", "tags"}

        parsed = Note.model_validate(dumped)
        assert parsed == note

    def test_naive_timestamps_become_utc(self):
        naive = datetime.datetime(2024, 1, 1, 8, 30)
        note = Note(id="n_1", created_at=naive, updated_at=naive)
        assert note.created_at.tzinfo == timezone.utc
        assert note.created_at.hour == 8

    def test_other_zones_converted(self):
        plus_two = timezone(timedelta(hours=2))
        value = datetime.datetime(2024, 1, 1, 10, 0, tzinfo=plus_two)
        assert ensure_timezone_aware(value).hour == 8

    def test_updated_before_created_rejected(self):
        now = datetime.datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            Note(id="n_1", created_at=now, updated_at=now - timedelta(seconds=1))

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            Note(id="  ")

    def test_null_tags_treated_as_empty(self):
        assert Note.model_validate({"id": "n_1", "tags": None}).tags == []


class TestAttachmentModels:
    """Tests for image and file attachments."""

    def test_image_mime_is_sniffed(self):
        image = ImageAttachment(id=5, note_id="n_1", name="cat.png", data=PNG_BYTES)
        assert image.mime_type == "image/png"
        assert image.size == 500
        assert image.reference == "image:5"

    def test_unknown_image_payload_gets_default_mime(self):
        image = ImageAttachment(note_id="n_1", name="blob", data=b"????")
        assert image.mime_type == DEFAULT_MIME_TYPE

    def test_file_mime_defaults(self):
        attached = FileAttachment(id=2, note_id="n_1", name="a.bin", data=b"x", mime_type=None)
        assert attached.mime_type == DEFAULT_MIME_TYPE
        assert attached.reference == "file:2"

    def test_attachments_are_immutable(self):
        image = ImageAttachment(note_id="n_1", name="cat.png", data=PNG_BYTES)
        with pytest.raises(ValidationError):
            image.name = "dog.png"


class TestBundleModel:
    """Tests for the wire bundle schema."""

    def test_missing_attachment_arrays(self):
        bundle = Bundle.model_validate({"notes": []})
        assert bundle.images == []
        assert bundle.files == []

    def test_null_arrays(self):
        bundle = Bundle.model_validate({"notes": None, "images": None, "files": None})
        assert bundle.notes == [] and bundle.images == [] and bundle.files == []

    def test_file_mime_under_type_key(self):
        entry = BundleFile.model_validate(
            {"noteId": "n_1", "name": "a.pdf", "data": "", "type": "application/pdf"}
        )
        assert entry.mime_type == "application/pdf"
        dumped = entry.model_dump(by_alias=True)
        assert dumped["type"] == "application/pdf"
        assert dumped["noteId"] == "n_1"
        assert "mime_type" not in dumped


class TestEnvelopeModel:
    """Tests for the container schema."""

    def _document(self, **overrides):
        document = {
            "format": "pen",
            "version": 1,
            "kdf": {"name": "PBKDF2", "hash": "SHA-256", "iterations": 150000, "salt": "c2FsdA=="},
            "cipher": {"name": "AES-GCM", "iv": "aXY="},
            "ciphertext": "Y3Q=",
        }
        document.update(overrides)
        return document

    def test_current_field_names(self):
        container = PenContainerV1.model_validate(self._document())
        assert container.kdf.salt == "c2FsdA=="
        assert container.cipher.iv == "aXY="
        assert container.ciphertext == "Y3Q="
        assert container.meta is None

    def test_legacy_field_names(self):
        document = self._document(
            kdf={"iterations": 150000, "salt_b64": "c2FsdA=="},
            cipher={"iv_b64": "aXY="},
            meta={"date": "2024-05-01T00:00:00Z", "notes": 3},
        )
        document["ct_b64"] = document.pop("ciphertext")
        container = PenContainerV1.model_validate(document)
        assert container.kdf.salt == "c2FsdA=="
        assert container.cipher.iv == "aXY="
        assert container.ciphertext == "Y3Q="
        assert container.meta.notes_count == 3
        assert container.meta.created_at.year == 2024

    def test_to_json_uses_wire_names(self):
        container = PenContainerV1.model_validate(
            self._document(app={"name": "penvault", "schema": 2, "build": "0.3.0"})
        )
        text = container.to_json()
        assert '"schema": 2' in text
        assert '"ciphertext"' in text
        assert '"meta"' not in text

    def test_unknown_format_rejected(self):
        with pytest.raises(ValidationError):
            PenContainerV1.model_validate(self._document(format="zip"))
