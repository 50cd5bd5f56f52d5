"""Blob codec: binary payloads to and from transport-safe text.

Attachment payloads travel inside bundles as base64 data URLs
(``data:<mime>;base64,<payload>``), the same shape browsers produce with
``FileReader.readAsDataURL``. Encoding is done in bounded chunks so a
very large payload never goes through a single encoder call.
"""
import base64
import binascii
import re
from typing import Iterator, Optional, Tuple
from urllib.parse import unquote_to_bytes

from penvault.config import DEFAULT_B64_CHUNK_SIZE

DEFAULT_MIME_TYPE = "application/octet-stream"

_DATA_URL_PATTERN = re.compile(
    r"^data:(?P<mime>[^;,]*)(?P<params>(?:;[^;,]+)*?)(?P<b64>;base64)?,(?P<payload>.*)$",
    re.DOTALL,
)

# (magic prefix, mime type) pairs checked in order
_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
)


def _iter_chunks(data: bytes, chunk_size: int) -> Iterator[bytes]:
    view = memoryview(data)
    for start in range(0, len(view), chunk_size):
        yield view[start:start + chunk_size].tobytes()


def b64encode_chunked(data: bytes, chunk_size: int = DEFAULT_B64_CHUNK_SIZE) -> str:
    """Base64-encode ``data`` in chunks of ``chunk_size`` bytes.

    ``chunk_size`` must be a multiple of 3: only then does every chunk but
    the last encode without padding, so the concatenation equals the
    encoding of the whole buffer.

    Raises:
        ValueError: If chunk_size is not a positive multiple of 3.
    """
    if chunk_size < 3 or chunk_size % 3:
        raise ValueError("chunk_size must be a positive multiple of 3")
    return "".join(
        base64.b64encode(chunk).decode("ascii")
        for chunk in _iter_chunks(bytes(data), chunk_size)
    )


def b64decode_strict(text: str) -> bytes:
    """Decode standard base64, rejecting any non-alphabet character.

    Only the canonical encoding is accepted: text whose unused bits before
    the ``=`` padding are not zero is rejected, so every change to the
    text changes the result or fails.

    Raises:
        ValueError: If the text is not valid canonical base64.
    """
    try:
        data = base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    if base64.b64encode(data).decode("ascii") != text:
        raise ValueError("Invalid base64 payload: not canonically encoded")
    return data


def sniff_image_mime(data: bytes) -> Optional[str]:
    """Infer an image mime type from the payload's magic bytes.

    Returns None when the payload is not a recognised image format.
    """
    head = bytes(data[:512])
    for signature, mime in _IMAGE_SIGNATURES:
        if head.startswith(signature):
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[4:12] in (b"ftypavif", b"ftypavis"):
        return "image/avif"
    stripped = head.lstrip()
    if stripped.startswith(b"<svg") or (
        stripped.startswith(b"<?xml") and b"<svg" in head
    ):
        return "image/svg+xml"
    return None


def encode_blob(
    data: bytes,
    mime_type: Optional[str] = None,
    chunk_size: int = DEFAULT_B64_CHUNK_SIZE,
) -> str:
    """Encode a binary payload as a base64 data URL."""
    mime = mime_type or DEFAULT_MIME_TYPE
    return f"data:{mime};base64,{b64encode_chunked(data, chunk_size)}"


def decode_blob(text: str) -> Tuple[bytes, str]:
    """Decode a data URL (or bare base64 text) back to bytes.

    Returns:
        Tuple of (payload bytes, mime type). Bare base64 input yields the
        default ``application/octet-stream`` mime type.

    Raises:
        ValueError: If the text is neither a data URL nor valid base64.
    """
    match = _DATA_URL_PATTERN.match(text)
    if match is None:
        return b64decode_strict(text), DEFAULT_MIME_TYPE

    mime = match.group("mime") or DEFAULT_MIME_TYPE
    payload = match.group("payload")
    if match.group("b64"):
        return b64decode_strict(payload), mime

    # Percent-encoded (non-base64) data URLs, e.g. inline SVG
    return unquote_to_bytes(payload), mime
