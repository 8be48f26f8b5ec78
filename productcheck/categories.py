"""Mapping of free-text categories onto the groups external databases cover."""
from __future__ import annotations

CATEGORY_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("cosmetics", "cosmetics"),
    ("skincare", "cosmetics"),
    ("skin care", "cosmetics"),
    ("personal care", "personal_care"),
    ("hair care", "cosmetics"),
    ("beauty", "cosmetics"),
    ("makeup", "cosmetics"),
    ("food", "food"),
    ("beverage", "food"),
    ("drink", "food"),
    ("supplement", "supplement"),
    ("vitamin", "supplement"),
    ("medication", "medication"),
    ("drug", "medication"),
    ("pharmaceutical", "medication"),
)

DEFAULT_CATEGORY = "food"


def map_category(category: str | None) -> str:
    """Return the category group for ``category``; unknown text maps to food."""
    normalized = (category or "").strip().lower()
    if not normalized:
        return DEFAULT_CATEGORY
    for keyword, group in CATEGORY_KEYWORDS:
        if keyword in normalized:
            return group
    return DEFAULT_CATEGORY
