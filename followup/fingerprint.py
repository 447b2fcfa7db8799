"""Stable request fingerprints used as follow-up deduplication keys."""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_MASK = 0xFFFFFFFF

FINGERPRINT_PREFIX = "fp_"
FINGERPRINT_RE = re.compile(r"^fp_[0-9a-z]+$")


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def normalize(text: str) -> str:
    """Collapse runs of whitespace and trim; case is preserved."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def fingerprint(text: str) -> str:
    """Return a short deterministic key for ``text``.

    Uses a 32-bit rolling hash (``h * 31 + ord(ch)``), so the value is stable
    across processes regardless of ``PYTHONHASHSEED``. Collisions are possible
    and only ever suppress a duplicate follow-up.
    """
    h = 0
    for ch in normalize(text):
        h = (h * 31 + ord(ch)) & _MASK
    return FINGERPRINT_PREFIX + _base36(h)


def looks_like_fingerprint(value: str) -> bool:
    return bool(FINGERPRINT_RE.match(value))
