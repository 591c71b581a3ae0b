"""
auth/sanitize.py -- Normalization and validation of raw text fields.

Every free-text field (email, display name, item name) passes through
sanitize() before it is stored or compared. Escaping the five HTML-significant
characters at the boundary means persisted data is safe even if a later
renderer forgets to escape it.

All functions are pure. Failure is reported as False / None, never raised --
the facades turn a failed check into a ValidationError with a message.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

_ESCAPES = str.maketrans(
    {
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#x27;",
        "/": "&#x2F;",
    }
)

_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")

NAME_MIN, NAME_MAX = 2, 50
ITEM_NAME_MIN, ITEM_NAME_MAX = 1, 120
PASSWORD_MIN = 6
# bcrypt only looks at the first 72 bytes. Longer input is rejected rather
# than silently truncated.
PASSWORD_MAX_BYTES = 72


def sanitize(text: str | None) -> str:
    """Trim surrounding whitespace and escape < > " ' / as HTML entities."""
    if text is None:
        return ""
    return text.strip().translate(_ESCAPES)


def normalize_email(text: str | None) -> str:
    """Sanitize and lower-case an email so lookups are case-insensitive."""
    return sanitize(text).lower()


def validate_email(text: str | None) -> bool:
    return bool(text) and _EMAIL_RE.fullmatch(text) is not None


def validate_name(text: str | None) -> bool:
    """Display names are 2-50 characters after sanitization."""
    return NAME_MIN <= len(sanitize(text)) <= NAME_MAX


def validate_password(text: str | None) -> bool:
    if not text or len(text) < PASSWORD_MIN:
        return False
    return len(text.encode("utf-8")) <= PASSWORD_MAX_BYTES


def validate_item_name(text: str | None) -> bool:
    return ITEM_NAME_MIN <= len(sanitize(text)) <= ITEM_NAME_MAX


def parse_price(text: str | int | float | Decimal | None) -> Decimal | None:
    """Parse a price into a non-negative Decimal.

    Returns None for anything that is not a finite, non-negative number:
    "", "abc", "-3", "NaN", "Infinity". Floats go through str() so 19.99
    becomes Decimal("19.99") rather than its binary expansion.
    """
    if text is None or isinstance(text, bool):
        return None
    try:
        value = Decimal(str(text).strip())
    except InvalidOperation:
        return None
    if not value.is_finite() or value < 0:
        return None
    # Normalize negative zero
    return abs(value)
