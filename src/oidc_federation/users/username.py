"""Validity check and normalization for local account names."""

import re
import unicodedata
from typing import Optional

MAX_USERNAME_LENGTH = 255

# Characters that cannot appear in a local account name
INVALID_USERNAME_CHARACTERS = frozenset("#<>[]|{}/:@")

_WHITESPACE = re.compile(r"\s+")


def normalize_username(name: Optional[str]) -> Optional[str]:
    """Return the canonical form of ``name`` or ``None`` if it is not usable.

    Surrounding whitespace is stripped and inner whitespace runs collapse to a
    single space. Names that end up empty, are too long, contain a reserved
    or control character, or consist only of dots are rejected.

    >>> normalize_username("  Jane   Doe ")
    'Jane Doe'
    >>> normalize_username("a/b") is None
    True
    """
    if name is None:
        return None

    name = unicodedata.normalize("NFC", _WHITESPACE.sub(" ", name).strip())
    if not name or len(name) > MAX_USERNAME_LENGTH:
        return None

    if not name.strip("."):
        return None

    for char in name:
        if char in INVALID_USERNAME_CHARACTERS:
            return None
        if unicodedata.category(char).startswith("C"):
            return None

    return name
