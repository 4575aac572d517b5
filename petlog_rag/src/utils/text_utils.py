"""
Petlog RAG - Text Utilities
============================
Helper functions for cleaning memory text before embedding, splitting
queries into keywords for re-ranking, and making stored content safe to
splice into a larger prompt.

These utilities are stateless and side-effect-free.
"""

from __future__ import annotations

import re
import unicodedata


# Control characters (C0/C1) and zero-width / formatting artifacts.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")
_WHITESPACE_RE = re.compile(r"\s+")

# Runs that the surrounding prompt uses as section markers.
_DELIMITER_RE = re.compile(r"={3,}|═{3,}|#{3,}|-{3,}|`{3,}")

ELLIPSIS = "..."


def clean_text(text: str | None) -> str:
    """
    Normalise memory content for embedding and storage.

    Steps:
        1. Unicode NFC normalisation, so Hangul syllables and their
           decomposed jamo compare equal.
        2. Strip non-printable / zero-width characters.
        3. Collapse every whitespace run (newlines included) to a single
           space and trim the ends.

    Returns an empty string for ``None`` or blank input.
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_keywords(query: str) -> list[str]:
    """
    Split a query into lower-cased whitespace tokens.

    Duplicates are kept so that a repeated word weighs proportionally in
    the keyword bonus.
    """
    return query.lower().split()


def keyword_bonus(content: str | None, keywords: list[str]) -> float:
    """
    Fraction of *keywords* that occur as a substring of *content*
    (case-insensitive).  Always in ``[0, 1]``.
    """
    if not content or not keywords:
        return 0.0
    lowered = content.lower()
    matches = sum(1 for kw in keywords if kw in lowered)
    return matches / len(keywords)


def truncate(text: str, max_chars: int | None) -> str:
    """Cut *text* to *max_chars* characters, appending ``...`` if cut."""
    if max_chars is None or len(text) <= max_chars:
        return text
    return text[:max_chars] + ELLIPSIS


def neutralise_delimiters(text: str) -> str:
    """
    Defuse section-marker runs (``===``, ``═══``, ``###``, ``---``,
    backtick fences) by collapsing each run to a single character.
    """
    return _DELIMITER_RE.sub(lambda m: m.group(0)[0], text)
