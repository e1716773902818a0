"""Caption text cleanup for storage and the stricter normalisation for comparison."""

from __future__ import annotations

import re

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")

# Entities the caption feeds actually emit; ``&amp;`` last so it cannot create new ones.
_ENTITIES = (
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


def clean_text(text: str) -> str:
    """Clean caption text for storage.

    Removes markup tags (inline ``<c>`` / timestamp tags included), collapses
    whitespace, decodes escaped ampersands, quotes and apostrophes and trims.
    Casing and punctuation are kept.
    """
    cleaned = _TAG_RE.sub("", text or "")
    cleaned = _WHITESPACE_RE.sub(" ", cleaned)
    for entity, char in _ENTITIES:
        cleaned = cleaned.replace(entity, char)
    return cleaned.strip()


def normalize_for_comparison(text: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace.

    Only used to decide whether two texts are "the same"; never stored.
    """
    normalized = _PUNCTUATION_RE.sub("", (text or "").lower())
    return _WHITESPACE_RE.sub(" ", normalized).strip()
