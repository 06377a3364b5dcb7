"""Category vocabulary and priority levels for work items."""
from __future__ import annotations

from typing import Any, Iterable

UNCATEGORIZED = "Uncategorized"
GENERAL_CATEGORY = "General"

BROAD_CATEGORIES: tuple[str, ...] = (
    UNCATEGORIZED,
    "Product",
    "Engineering",
    "Growth",
    "Sales & Marketing",
    "Customer Success",
    "Operations",
    "Finance & Legal",
    "People & Culture",
    "Strategy",
)

PRIORITIES: tuple[str, ...] = ("P1", "P2", "P3", "P4", "P5")
DEFAULT_PRIORITY = "P3"


def normalize_priority(value: Any, fallback: Any = None) -> str:
    """Return ``value`` if it is a known priority, else ``fallback``, else P3."""
    if value is not None:
        text = str(value).strip().upper()
        if text in PRIORITIES:
            return text
    if fallback is not None:
        text = str(fallback).strip().upper()
        if text in PRIORITIES:
            return text
    return DEFAULT_PRIORITY


def is_placeholder_category(
    category: Any,
    placeholders: Iterable[str] = (UNCATEGORIZED,),
) -> bool:
    """True when the category is blank or one the model may overwrite."""
    text = str(category or "").strip()
    if not text:
        return True
    return text.lower() in {p.lower() for p in placeholders}
