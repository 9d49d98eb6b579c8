"""Utilities to normalize activity category input."""

from __future__ import annotations

import re
import unicodedata
from typing import Union

from .errors import UnknownCategory
from .models import ActivityCategory

# Labels shown on the dashboard buttons (Romanian) and a few common
# abbreviations, mapped to the canonical category.
_ALIASES: dict[str, ActivityCategory] = {
    "drive": ActivityCategory.DRIVING,
    "condus": ActivityCategory.DRIVING,
    "pause": ActivityCategory.BREAK,
    "pauza": ActivityCategory.BREAK,
    "munca": ActivityCategory.WORK,
    "alte activitati": ActivityCategory.OTHER,
}

_WHITESPACE_PATTERN = re.compile(r"[\s_-]+")


def normalize_category(value: Union[str, ActivityCategory, None]) -> ActivityCategory:
    """Return the category for ``value`` or raise ``UnknownCategory``."""
    if isinstance(value, ActivityCategory):
        return value
    if not isinstance(value, str):
        raise UnknownCategory(value)

    cleaned = _strip_accents(value).strip().lower()
    cleaned = _WHITESPACE_PATTERN.sub(" ", cleaned)
    if not cleaned:
        raise UnknownCategory(value)

    try:
        return ActivityCategory(cleaned)
    except ValueError:
        pass
    category = _ALIASES.get(cleaned)
    if category is None:
        raise UnknownCategory(value)
    return category


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))
