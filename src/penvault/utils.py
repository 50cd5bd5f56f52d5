"""Text helpers for note content.

Notes are markdown-like text. Three kinds of tokens matter to the vault:
hashtags (``#word`` or ``#'quoted phrase'``), wiki links (``[[Title]]``)
and blob references (``image:<id>`` / ``file:<id>``).
"""
import re
from typing import List, NamedTuple

TAG_PATTERN = re.compile(r"#'([^']+)'|#(\w+)")
WIKI_LINK_PATTERN = re.compile(r"\[\[(.+?)\]\]")
BLOB_REFERENCE_PATTERN = re.compile(r"\b(image|file):(\d+)\b")


class BlobReference(NamedTuple):
    """A reference to an attachment embedded in note content."""

    kind: str
    attachment_id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.attachment_id}"


def extract_tags(text: str) -> List[str]:
    """Extract hashtags from note content.

    Both ``#word`` and ``#'quoted phrase'`` forms are recognised. Tags are
    stripped, lower-cased and deduplicated (first occurrence wins the
    position in the returned list).

    Examples:
        "Idea #Python and #'Open Source' #python" -> ["python", "open source"]
    """
    tags = {}
    for match in TAG_PATTERN.finditer(text or ""):
        tag = (match.group(1) or match.group(2) or "").strip().lower()
        if tag:
            tags.setdefault(tag, None)
    return list(tags)


def slugify_title(title: str) -> str:
    """Slug used in ``note:`` links: trimmed, lower-cased, spaces to hyphens."""
    return re.sub(r"\s+", "-", title.strip().lower())


def render_wiki_links(text: str) -> str:
    """Rewrite ``[[Title]]`` wiki links as ``[Title](note:title)`` links."""
    return WIKI_LINK_PATTERN.sub(
        lambda m: f"[{m.group(1)}](note:{slugify_title(m.group(1))})", text
    )


def find_wiki_links(text: str) -> List[str]:
    """Return the titles of all wiki links in ``text``, in order."""
    return [m.group(1).strip() for m in WIKI_LINK_PATTERN.finditer(text or "")]


def parse_blob_reference(reference: str) -> BlobReference:
    """Parse an ``image:<id>`` or ``file:<id>`` reference string.

    Raises:
        ValueError: If the string is not a blob reference.
    """
    match = BLOB_REFERENCE_PATTERN.fullmatch(reference.strip())
    if match is None:
        raise ValueError(f"Not a blob reference: {reference!r}")
    return BlobReference(match.group(1), int(match.group(2)))


def find_blob_references(text: str) -> List[BlobReference]:
    """Return every distinct blob reference in ``text``, in order."""
    seen = {}
    for match in BLOB_REFERENCE_PATTERN.finditer(text or ""):
        seen.setdefault(BlobReference(match.group(1), int(match.group(2))), None)
    return list(seen)


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)
