"""Small helpers for query keys and barcode handling."""
from __future__ import annotations

import hashlib
import re
from typing import Optional

_SEPARATOR_RE = re.compile(r"[\s-]+")
_DIGITS_RE = re.compile(r"^\d+$")


def normalize_key(query: Optional[str]) -> str:
    """Trimmed, lower-cased form used for cache lookup and equality."""
    return (query or "").strip().lower()


def clean_barcode(value: Optional[str]) -> str:
    """Strip spaces and dashes a scanner or user may add around digits."""
    return _SEPARATOR_RE.sub("", value or "")


def looks_like_barcode(value: Optional[str]) -> bool:
    cleaned = clean_barcode(value)
    return bool(cleaned) and bool(_DIGITS_RE.match(cleaned)) and len(cleaned) >= 6


def ean13_check_digit(first_twelve: str) -> int:
    total = sum(int(digit) * (1 if idx % 2 == 0 else 3) for idx, digit in enumerate(first_twelve))
    return (10 - total % 10) % 10


def is_valid_barcode(value: Optional[str]) -> bool:
    """EAN-13 codes must carry a correct check digit; other lengths only need 8-14 digits."""
    cleaned = clean_barcode(value)
    if not _DIGITS_RE.match(cleaned):
        return False
    if len(cleaned) == 13:
        return ean13_check_digit(cleaned[:12]) == int(cleaned[12])
    return 8 <= len(cleaned) <= 14


def hash_key(*parts: Optional[str]) -> str:
    joined = "\x1f".join(normalize_key(part) for part in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()
