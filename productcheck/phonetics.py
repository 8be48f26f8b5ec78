"""Product name normalization and phonetic keys.

Two-step pipeline used by the catalog query builder and the importer:

    1) :func:`normalize_query` cleans the user text (lowercase, strip
       punctuation, collapse whitespace) and expands a handful of colloquial
       product aliases such as ``"coke"`` -> ``"coca cola"``.
    2) :func:`to_phonetic` accepts the normalized string, transliterates it to
       ASCII, collapses repeated letters and emits double-metaphone codes so a
       misspelling like ``"nescaffe"`` still meets ``"nescafe"``.

The normalized text feeds the fuzzy/substring clauses while the phonetic key
hits the ``phonetic`` field indexed next to every catalog entry.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable

from metaphone import doublemetaphone
from unidecode import unidecode

logger = logging.getLogger(__name__)

# Keep letters of any script, digits and spaces.
_NON_WORD_RE = re.compile(r"[^\w ]+|_")
# After transliteration we keep only Latin letters/digits/spaces for metaphone.
_ASCII_ALNUM_SPACE_RE = re.compile(r"[^0-9a-zA-Z ]+")
_REPEATED_LETTER_RE = re.compile(r"([A-Za-z])\1+")

PRODUCT_ALIASES: dict[str, str] = {
    "coke": "coca cola",
    "cocacola": "coca cola",
    "indomi": "indomie",
    "acetaminophen": "paracetamol",
    "vit": "vitamin",
    "vits": "vitamin",
}


def normalize_query(text: str) -> str:
    """Normalize free-form input prior to search and phonetics.

    1. Lowercase the input.
    2. Replace everything except letters, digits and spaces with a space.
    3. Collapse multiple spaces and trim.
    4. Expand known product aliases token by token.

    Repeated letters are kept on purpose: the substring clause matches the
    catalog name literally and ``"coffee"`` must stay ``"coffee"``.
    """

    lowered = (text or "").lower()
    cleaned = _NON_WORD_RE.sub(" ", lowered)
    compact = " ".join(cleaned.split())
    if not compact:
        logger.debug("normalize_query empty after cleaning raw=%r", text)
        return ""

    tokens = [PRODUCT_ALIASES.get(token, token) for token in compact.split()]
    normalized = " ".join(tokens)
    logger.debug("normalize_query raw=%r tokens=%s normalized=%r", text, tokens, normalized)
    return normalized


def transliterate_text(text: str) -> str:
    """Normalize and fold the text to ASCII (``"Café Noir"`` -> ``"cafe noir"``)."""

    normalized = normalize_query(text)
    if not normalized:
        return ""
    ascii_only = _ASCII_ALNUM_SPACE_RE.sub(" ", unidecode(normalized))
    return " ".join(ascii_only.split())


def _metaphone_tokens(tokens: Iterable[str]) -> list[str]:
    phonetics: list[str] = []
    for token in tokens:
        primary, secondary = doublemetaphone(token)
        for code in (primary, secondary):
            if code and code not in phonetics:
                phonetics.append(code)
    return phonetics


def to_phonetic(normalized_text: str) -> str:
    """Generate a phonetic key from **already normalized** text.

    Any error results in an empty string; a missing phonetic clause only
    weakens matching.
    """

    try:
        if not normalized_text:
            return ""
        ascii_only = _ASCII_ALNUM_SPACE_RE.sub(" ", unidecode(normalized_text))
        collapsed = _REPEATED_LETTER_RE.sub(r"\1", ascii_only.lower())
        codes = _metaphone_tokens(collapsed.split())
        phonetic = " ".join(codes)
        logger.debug("to_phonetic normalized=%r collapsed=%r phonetic=%r", normalized_text, collapsed, phonetic)
        return phonetic
    except Exception as exc:  # pragma: no cover
        logger.debug("phonetic conversion failed for %r: %s", normalized_text, exc)
        return ""
