"""Turn "the 2nd one", "order 3" or "1, 2 and 4" into list positions."""

import re
from typing import List, Optional

ORDINAL_WORDS = {
    "first": 1, "1st": 1,
    "second": 2, "2nd": 2,
    "third": 3, "3rd": 3,
    "fourth": 4, "4th": 4,
    "fifth": 5, "5th": 5,
    "sixth": 6, "6th": 6,
    "seventh": 7, "7th": 7,
    "eighth": 8, "8th": 8,
    "ninth": 9, "9th": 9,
    "tenth": 10, "10th": 10,
}

_NUMERIC_PATTERNS = [
    re.compile(r"(?:order|task|item|number)\s+(\d+)"),
    re.compile(r"(\d+)(?:st|nd|rd|th)?\s+(?:order|task|item)"),
    re.compile(r"\b(\d+)(?:st|nd|rd|th)\b"),
    re.compile(r"^(\d+)$"),
    re.compile(r"\b(\d+)\b"),
]


def _in_range(position: int, max_position: int) -> bool:
    return 1 <= position <= max_position


def _ordinal_positions(text: str, max_position: int) -> List[int]:
    found = []
    for word, position in ORDINAL_WORDS.items():
        if re.search(rf"\b{re.escape(word)}\b", text) and _in_range(position, max_position):
            found.append(position)
    return found


def resolve_single(text: str, max_position: int) -> Optional[int]:
    """Return the one position the text points at, or None.

    Ordinal words win over digits; among the digit patterns the more specific
    ones ("order 3", "3rd task") are tried before a bare number.
    """
    lowered = (text or "").lower().strip()
    if not lowered or max_position < 1:
        return None

    ordinals = _ordinal_positions(lowered, max_position)
    if ordinals:
        return ordinals[0]

    for pattern in _NUMERIC_PATTERNS:
        match = pattern.search(lowered)
        if match:
            position = int(match.group(1))
            if _in_range(position, max_position):
                return position
    return None


def resolve_multiple(text: str, max_position: int) -> List[int]:
    """Return every in-range position mentioned, de-duplicated and ascending."""
    lowered = (text or "").lower().strip()
    if not lowered or max_position < 1:
        return []

    positions = {int(n) for n in re.findall(r"\d+", lowered) if _in_range(int(n), max_position)}
    positions.update(_ordinal_positions(lowered, max_position))
    return sorted(positions)
