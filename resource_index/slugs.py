"""Slug normalisation for subject and topic names.

The same rule builds the path used by ``POST /index`` and the path read by
``GET /indices/{subjectSlug}/{topicSlug}.json``; if the two drift apart,
lookups miss silently.
"""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_RE = re.compile(r"[^a-z0-9-]")
_HYPHENS_RE = re.compile(r"-{2,}")


def normalize_slug(value: str) -> str:
    """Return the URL slug for a subject or topic name.

    >>> normalize_slug("  Biología Celular ")
    'biologia-celular'
    >>> normalize_slug("C++ / Punteros")
    'c-punteros'
    """
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = _WHITESPACE_RE.sub("-", stripped.lower().strip())
    slug = _INVALID_RE.sub("", slug)
    slug = _HYPHENS_RE.sub("-", slug)
    return slug.strip("-")
